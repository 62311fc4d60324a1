"""Validate and repair raw model output into a complete analysis document.

The validator is a small state machine::

    Strip → Locate → Parse ──────────────→ Reconcile
                       └→ Secondary-Extract ┘    │
                              └→ Fallback        └→ (Guide alignment)

Every path ends in a dict that has every section the analysis kind
requires, with the right container types.  Nothing here raises: a model
that returns prose, truncated JSON or the wrong schema still produces a
document the caller can store and render.

Reconciliation is a fixed point: validating ``json.dumps(result.data)``
again returns equal ``data``.
"""

from __future__ import annotations

import difflib
import json
import logging
import math
import re
from typing import Any

from qualmatrix.llm.kinds import (
    NOT_AVAILABLE,
    AnalysisKind,
    Container,
    KindSpec,
    SectionSpec,
    foreign_section_keys,
    get_kind_spec,
)
from qualmatrix.models import (
    DefectKind,
    GuideStructure,
    QualityDefect,
    ValidationResult,
    ValidationStatus,
)
from qualmatrix.stages.quality import find_quality_defects

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```\s*$")
_GREEDY_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_RESPONDENT_ID_KEYS = ("respondent", "respondent_id", "id", "name")
_QUESTION_KEYS = ("question", "question_text", "text")
_CELL_TEXT_KEYS = ("quote", "summary", "theme")

FUZZY_MATCH_RATIO = 0.8


# ---------------------------------------------------------------------------
# Strip / Locate / Parse
# ---------------------------------------------------------------------------


def _strip_fences(raw: str) -> str:
    text = _FENCE_OPEN_RE.sub("", raw, count=1)
    return _FENCE_CLOSE_RE.sub("", text, count=1)


def _parse_object(text: str) -> dict[str, Any] | None:
    """Strict JSON parse; anything other than an object counts as failure.

    ``ValueError`` covers malformed JSON and integers past the
    interpreter's digit limit; very deep nesting raises ``RecursionError``.
    """
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _extract_object(raw: str, repairs: list[str]) -> dict[str, Any] | None:
    cleaned = _strip_fences(raw)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        return None

    data = _parse_object(cleaned[start : end + 1])
    if data is not None:
        return data

    match = _GREEDY_OBJECT_RE.search(raw)
    if match:
        data = _parse_object(match.group(0))
        if data is not None:
            repairs.append("recovered JSON object by secondary extraction")
            return data
    return None


# ---------------------------------------------------------------------------
# Reconcile: containers
# ---------------------------------------------------------------------------


def _decode_if_string(value: Any) -> Any:
    """Stringified JSON inside JSON is common; decode one level."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except (ValueError, RecursionError):
                return value
    return value


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(_as_text(v) for v in value if v is not None)
    return str(value)


def _as_object_list(value: Any, label: str, repairs: list[str]) -> list[Any]:
    value = _decode_if_string(value)
    if value is None:
        repairs.append(f"added empty {label}")
        return []
    if isinstance(value, dict):
        repairs.append(f"wrapped single object in {label}")
        return [value]
    if isinstance(value, list):
        return value
    repairs.append(f"replaced non-list {label}")
    return []


def _coerce_confidence(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    if not math.isfinite(value):
        return None
    if 0.0 <= value <= 1.0:
        return value
    if 1.0 < value <= 100.0:
        return value / 100.0
    return None


def _coerce_cell(value: Any, where: str, repairs: list[str]) -> dict[str, Any] | None:
    value = _decode_if_string(value)
    if value is None:
        repairs.append(f"dropped empty cell for {where}")
        return None
    if not isinstance(value, dict):
        repairs.append(f"converted plain-text cell to quote for {where}")
        return {"quote": _as_text(value), "summary": "", "theme": ""}

    cell: dict[str, Any] = {k: _as_text(value.get(k)) for k in _CELL_TEXT_KEYS}
    if "confidence" in value and value["confidence"] is not None:
        confidence = _coerce_confidence(value["confidence"])
        if confidence is None:
            repairs.append(f"dropped invalid confidence for {where}")
        else:
            if confidence != value["confidence"]:
                repairs.append(f"normalised confidence for {where}")
            cell["confidence"] = confidence
    if set(value) - set(cell) - {"confidence"} or any(
        not isinstance(value.get(k), str) for k in _CELL_TEXT_KEYS
    ):
        repairs.append(f"normalised cell fields for {where}")
    return cell


def _coerce_respondents(value: Any, row_label: str, repairs: list[str]) -> dict[str, Any]:
    value = _decode_if_string(value)
    if value is None:
        return {}

    if isinstance(value, list):
        repairs.append(f"converted respondent list to mapping in {row_label}")
        mapping: dict[str, Any] = {}
        for n, entry in enumerate(value, start=1):
            rid = ""
            if isinstance(entry, dict):
                for key in _RESPONDENT_ID_KEYS:
                    if isinstance(entry.get(key), (str, int)) and str(entry[key]).strip():
                        rid = str(entry[key]).strip()
                        break
                entry = {k: v for k, v in entry.items() if k not in _RESPONDENT_ID_KEYS}
            mapping.setdefault(rid or f"Respondent-{n:02d}", entry)
        value = mapping

    if not isinstance(value, dict):
        repairs.append(f"replaced invalid respondents in {row_label}")
        return {}

    respondents: dict[str, Any] = {}
    for rid, raw_cell in value.items():
        rid = str(rid).strip()
        if not rid:
            repairs.append(f"dropped unnamed respondent in {row_label}")
            continue
        cell = _coerce_cell(raw_cell, f"{rid} in {row_label}", repairs)
        if cell is not None:
            respondents[rid] = cell
    return respondents


def _normalise_row(row: Any, index: int, repairs: list[str]) -> dict[str, Any]:
    label = f"row {index + 1}"
    row = _decode_if_string(row)
    if isinstance(row, str):
        repairs.append(f"converted plain-text {label} to a question row")
        row = {"question": row}
    elif not isinstance(row, dict):
        repairs.append(f"replaced invalid {label}")
        row = {}

    question = ""
    for key in _QUESTION_KEYS:
        question = _as_text(row.get(key)).strip()
        if question:
            break
    if not question:
        question = f"Question {index + 1}"
        repairs.append(f"filled empty question text in {label}")
    elif not isinstance(row.get("question"), str) or row["question"] != question:
        repairs.append(f"normalised question text in {label}")

    if not isinstance(row.get("question_type"), str):
        repairs.append(f"filled question_type in {label}")
    if "respondents" not in row:
        repairs.append(f"added empty respondents to {label}")

    out: dict[str, Any] = {
        "question_type": _as_text(row.get("question_type")),
        "question": question,
    }
    for key in ("section", "subsection"):
        text = _as_text(row.get(key)).strip()
        if text:
            out[key] = text
    out["respondents"] = _coerce_respondents(row.get("respondents"), label, repairs)

    extra = set(row) - set(out) - set(_QUESTION_KEYS)
    if extra:
        repairs.append(f"dropped unknown field(s) {', '.join(sorted(extra))} from {label}")
    return out


def _respondent_key(rid: str) -> str:
    """Comparison key: case, separators and leading zeros ignored."""
    key = re.sub(r"[^a-z0-9]", "", rid.lower())
    return re.sub(r"(?<!\d)0+(?=\d)", "", key)


def _canonicalise_respondents(rows: list[dict[str, Any]], repairs: list[str]) -> None:
    """Map equivalent respondent keys to the first spelling seen in the matrix."""
    canonical: dict[str, str] = {}
    for row in rows:
        merged: dict[str, Any] = {}
        for rid, cell in row["respondents"].items():
            name = canonical.setdefault(_respondent_key(rid), rid)
            if name != rid:
                repairs.append(f"renamed respondent {rid!r} to {name!r}")
            if name in merged:
                if not merged[name]["quote"].strip() and cell["quote"].strip():
                    merged[name] = cell
                repairs.append(f"merged duplicate respondent {rid!r} into {name!r}")
                continue
            merged[name] = cell
        row["respondents"] = merged


def _default_block(section: SectionSpec, content: str = NOT_AVAILABLE) -> dict[str, Any]:
    block: dict[str, Any] = {"title": section.title, "description": section.description}
    if section.container is Container.QUESTIONS:
        block["questions"] = []
    elif section.container is Container.TABLE:
        block["table"] = []
    else:
        block["content"] = content
    return block


def _reconcile_block(
    section: SectionSpec, value: Any, repairs: list[str]
) -> dict[str, Any]:
    value = _decode_if_string(value)
    if value is None:
        repairs.append(f"added missing section {section.key}")
        return _default_block(section)

    if not isinstance(value, dict):
        repairs.append(f"rebuilt section {section.key} from {type(value).__name__}")
        if section.container is Container.CONTENT:
            value = {"content": _as_text(value)}
        elif section.container is Container.QUESTIONS:
            value = {"questions": value if isinstance(value, list) else []}
        else:
            value = {"table": value if isinstance(value, list) else []}

    block: dict[str, Any] = {
        "title": _as_text(value.get("title")).strip() or section.title,
        "description": _as_text(value.get("description")).strip() or section.description,
    }
    if block["title"] != value.get("title") or block["description"] != value.get("description"):
        repairs.append(f"filled title/description of {section.key}")

    if section.container is Container.QUESTIONS:
        items = _as_object_list(value.get("questions"), f"{section.key}.questions", repairs)
        rows = [_normalise_row(item, i, repairs) for i, item in enumerate(items)]
        _canonicalise_respondents(rows, repairs)
        block["questions"] = rows
        content = value.get("content")
        if isinstance(content, str) and content.strip():
            block["content"] = content
    elif section.container is Container.TABLE:
        items = _as_object_list(value.get("table"), f"{section.key}.table", repairs)
        table = [item for item in items if isinstance(item, dict)]
        if len(table) != len(items):
            repairs.append(f"dropped {len(items) - len(table)} non-object row(s) from {section.key}")
        block["table"] = table
    else:
        content = _as_text(value.get("content"))
        if not content.strip():
            repairs.append(f"filled empty {section.key}.content")
            content = NOT_AVAILABLE
        elif content != value.get("content"):
            repairs.append(f"normalised {section.key}.content")
        block["content"] = content
    return block


def _reconcile(data: dict[str, Any], spec: KindSpec, repairs: list[str]) -> dict[str, Any]:
    foreign = foreign_section_keys(spec.kind)
    data = dict(data)

    # Bare {"questions": [...]} without its section wrapper
    matrix_key = spec.matrix_section.key
    if matrix_key not in data and "questions" in data:
        repairs.append(f"wrapped top-level questions in {matrix_key}")
        data[matrix_key] = {"questions": data.pop("questions")}

    # Wrong schema entirely: keep the rows, drop the wrapper
    if matrix_key not in data:
        for key in sorted(foreign & set(data)):
            block = _decode_if_string(data[key])
            if isinstance(block, dict) and block.get("questions"):
                repairs.append(f"moved {key} rows into {matrix_key}")
                data[matrix_key] = {"questions": block["questions"]}
                break

    for key in list(data):
        if key in foreign:
            repairs.append(f"removed {key} section, which belongs to another analysis kind")
        elif key not in spec.section_keys:
            repairs.append(f"removed unexpected top-level key {key!r}")

    return {
        section.key: _reconcile_block(section, data.get(section.key), repairs)
        for section in spec.sections
    }


# ---------------------------------------------------------------------------
# Guide alignment
# ---------------------------------------------------------------------------


def _question_key(text: str) -> str:
    text = re.sub(r"^\s*(?:q\d+|\d+|[a-z])[.:)]\s*", "", text.lower())
    return " ".join(re.sub(r"[^a-z0-9]+", " ", text).split())


def _match_rows(guide_keys: list[str], row_keys: list[str]) -> list[int | None]:
    """Assign each guide question at most one row: exact, then fuzzy, then containment."""
    assigned: list[int | None] = [None] * len(guide_keys)
    used: set[int] = set()

    def _free(j: int) -> bool:
        return j not in used and bool(row_keys[j])

    for i, gk in enumerate(guide_keys):
        for j, rk in enumerate(row_keys):
            if _free(j) and rk == gk:
                assigned[i] = j
                used.add(j)
                break

    for i, gk in enumerate(guide_keys):
        if assigned[i] is not None:
            continue
        best, best_ratio = None, FUZZY_MATCH_RATIO
        for j, rk in enumerate(row_keys):
            if not _free(j):
                continue
            ratio = difflib.SequenceMatcher(None, gk, rk).ratio()
            if ratio >= best_ratio:
                best, best_ratio = j, ratio
        if best is not None:
            assigned[i] = best
            used.add(best)

    for i, gk in enumerate(guide_keys):
        if assigned[i] is not None or not gk:
            continue
        for j, rk in enumerate(row_keys):
            if _free(j) and (gk in rk or rk in gk):
                assigned[i] = j
                used.add(j)
                break

    return assigned


def _align_to_guide(
    block: dict[str, Any],
    section_key: str,
    guide: GuideStructure,
    repairs: list[str],
) -> list[QualityDefect]:
    """Rewrite ``block["questions"]`` to exactly one row per guide question."""
    rows: list[dict[str, Any]] = block["questions"]
    entries = list(guide.iter_questions())
    assigned = _match_rows(
        [_question_key(q.text) for _, _, q in entries],
        [_question_key(r["question"]) for r in rows],
    )

    aligned: list[dict[str, Any]] = []
    for (section, sub, question), j in zip(entries, assigned):
        source = rows[j] if j is not None else None
        row: dict[str, Any] = {
            "question_type": (source or {}).get("question_type") or section.title,
            "question": question.text,
            "section": section.title,
        }
        if sub is not None:
            row["subsection"] = sub.title
        row["respondents"] = source["respondents"] if source else {}
        if source is None:
            repairs.append(f"added row for unanswered guide question {question.text!r}")
        elif source != row:
            repairs.append(f"aligned row {j + 1} to guide question {question.text!r}")
        aligned.append(row)

    matched_order = [j for j in assigned if j is not None]
    if matched_order != sorted(matched_order):
        repairs.append("reordered rows to follow the discussion guide")

    matched = set(matched_order)
    defects: list[QualityDefect] = []
    for j, row in enumerate(rows):
        if j in matched:
            continue
        repairs.append(f"dropped row {j + 1} ({row['question']!r}): not in the discussion guide")
        defects.append(
            QualityDefect(
                kind=DefectKind.UNMATCHED_QUESTION,
                section_key=section_key,
                row_index=j,
                question=row["question"],
                value=row["question"],
            )
        )

    block["questions"] = aligned
    return defects


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


def build_fallback(raw: str, kind: AnalysisKind) -> dict[str, Any]:
    """Minimal complete document carrying the raw model text."""
    spec = get_kind_spec(kind)
    text = raw if raw.strip() else NOT_AVAILABLE
    fallback_key = spec.fallback_section.key
    data: dict[str, Any] = {}
    for section in spec.sections:
        block = _default_block(section, content=text)
        if section.key == fallback_key and section.container is Container.QUESTIONS:
            block["content"] = text
        data[section.key] = block
    return data


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def validate_response(
    raw: str,
    kind: AnalysisKind | str,
    guide: GuideStructure | None = None,
) -> ValidationResult:
    """Turn raw model output into a complete, reconciled analysis document.

    Args:
        raw: The model's response text, untouched.
        kind: Which analysis schema the response should follow.
        guide: When authoritative, rows are aligned one-to-one with its
            questions.

    Returns:
        A :class:`ValidationResult`.  ``status`` is FALLBACK when no JSON
        object could be recovered, REPAIRED when the structure had to be
        changed, VALID otherwise.  Quality defects are reported separately
        and never affect ``status``.
    """
    spec = get_kind_spec(kind)
    raw = raw or ""
    repairs: list[str] = []
    defects: list[QualityDefect] = []

    parsed = _extract_object(raw, repairs)
    data: dict[str, Any] | None = None
    if parsed is None:
        reason = "no JSON object found"
    else:
        try:
            data = _reconcile(parsed, spec, repairs)
        except RecursionError:
            reason = "JSON nested too deeply to reconcile"

    if data is None:
        status = ValidationStatus.FALLBACK
        data = build_fallback(raw, spec.kind)
        repairs = [f"{reason}; kept raw output as text"]
        logger.warning(
            "Model output for %s unusable (%s, %d chars); using fallback structure",
            spec.kind.value,
            reason,
            len(raw),
        )
    else:
        status = ValidationStatus.REPAIRED if repairs else ValidationStatus.VALID

    if guide is not None and guide.is_authoritative:
        matrix_key = spec.matrix_section.key
        block = data[matrix_key]
        # A fallback block holds raw text and no rows; leave it as it is
        if block["questions"] or "content" not in block:
            align_repairs: list[str] = []
            defects.extend(_align_to_guide(block, matrix_key, guide, align_repairs))
            repairs.extend(align_repairs)
            if align_repairs and status is ValidationStatus.VALID:
                status = ValidationStatus.REPAIRED

    for repair in repairs:
        logger.info("Repair (%s): %s", spec.kind.value, repair)

    defects.extend(find_quality_defects(data, spec.kind))
    return ValidationResult(
        status=status,
        kind=spec.kind,
        data=data,
        repairs=repairs,
        defects=defects,
        raw=raw,
    )
