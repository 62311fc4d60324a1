"""Quality checks on a validated matrix.

These never reject anything.  They return :class:`QualityDefect` records
for cells that look ungrounded (placeholder quotes, generic themes, quotes
that do not occur in the transcripts) and log each one at WARNING.  The
pipeline decides whether defects are fatal.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from typing import Any

from qualmatrix.llm.kinds import CELL_FIELDS, AnalysisKind, get_kind_spec
from qualmatrix.models import DefectKind, QualityDefect, RawDocument

logger = logging.getLogger(__name__)

PLACEHOLDER_QUOTES = (
    "no specific quote available",
    "no quote available",
    "no transcript content",
    "no relevant quote",
    "quote not available",
)
PLACEHOLDER_SUMMARIES = (
    "no specific",
    "no response provided",
    "no summary available",
    "not available",
    "general response",
)
GENERIC_THEMES = frozenset({"general response", "general", "n/a", "none", "other"})

# Text the model copies from the schema example instead of the transcript
_SCHEMA_ECHOES = tuple(desc.lower() for _, desc in CELL_FIELDS)

_TEMPLATE_RE = re.compile(r"^\s*(?:\[[^\]]*\]|<[^>]*>)\s*$")
_ELLIPSIS_RE = re.compile(r"\.{3,}|…")
_WS_RE = re.compile(r"\s+")
_QUOTE_CHARS = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"', "`": "'"})
_EDGE_PUNCT = " \t\"'.,;:!?-–—()"
_MIN_FRAGMENT = 12


def _iter_cells(
    data: dict[str, Any], kind: AnalysisKind
) -> Iterator[tuple[str, int, str, str, dict[str, Any]]]:
    """Yield ``(section_key, row_index, question, respondent_id, cell)``."""
    key = get_kind_spec(kind).matrix_section.key
    rows = data.get(key, {}).get("questions", [])
    for index, row in enumerate(rows):
        for rid, cell in row.get("respondents", {}).items():
            yield key, index, row.get("question", ""), rid, cell


def _is_placeholder_quote(quote: str) -> bool:
    lowered = quote.strip().lower()
    if any(p in lowered for p in PLACEHOLDER_QUOTES):
        return True
    if _TEMPLATE_RE.match(quote):
        return True
    return any(lowered.startswith(echo[:40]) for echo in _SCHEMA_ECHOES)


def _defect(
    kind: DefectKind, section_key: str, index: int, question: str, rid: str, value: str
) -> QualityDefect:
    defect = QualityDefect(
        kind=kind,
        section_key=section_key,
        row_index=index,
        question=question,
        respondent_id=rid,
        value=value,
    )
    logger.warning("Quality defect: %s", defect.describe())
    return defect


def find_quality_defects(data: dict[str, Any], kind: AnalysisKind) -> list[QualityDefect]:
    """Flag placeholder and generic content in matrix cells."""
    defects: list[QualityDefect] = []
    for key, index, question, rid, cell in _iter_cells(data, kind):
        quote = cell.get("quote", "")
        if not quote.strip():
            defects.append(_defect(DefectKind.EMPTY_QUOTE, key, index, question, rid, quote))
        elif _is_placeholder_quote(quote):
            defects.append(
                _defect(DefectKind.PLACEHOLDER_QUOTE, key, index, question, rid, quote)
            )

        theme = cell.get("theme", "")
        if theme.strip().lower() in GENERIC_THEMES:
            defects.append(_defect(DefectKind.GENERIC_THEME, key, index, question, rid, theme))

        summary = cell.get("summary", "").strip().lower()
        if summary and any(summary.startswith(p) for p in PLACEHOLDER_SUMMARIES):
            defects.append(
                _defect(
                    DefectKind.PLACEHOLDER_SUMMARY, key, index, question, rid, cell["summary"]
                )
            )
    return defects


def _normalise(text: str) -> str:
    return _WS_RE.sub(" ", text.translate(_QUOTE_CHARS).lower()).strip()


def _fragments(quote: str) -> list[str]:
    parts = [p.strip(_EDGE_PUNCT) for p in _ELLIPSIS_RE.split(_normalise(quote))]
    parts = [p for p in parts if p]
    long_parts = [p for p in parts if len(p) >= _MIN_FRAGMENT]
    return long_parts or parts


def find_unverified_quotes(
    data: dict[str, Any],
    kind: AnalysisKind,
    documents: Sequence[RawDocument],
) -> list[QualityDefect]:
    """Flag quotes with no fragment that occurs verbatim in any transcript.

    Matching ignores case, whitespace runs and curly-versus-straight quote
    characters.  An ellipsis splits a quote into fragments; one matching
    fragment is enough.
    """
    corpus = _normalise("\n".join(d.content for d in documents))
    defects: list[QualityDefect] = []
    for key, index, question, rid, cell in _iter_cells(data, kind):
        quote = cell.get("quote", "")
        if not quote.strip() or _is_placeholder_quote(quote):
            continue
        fragments = _fragments(quote)
        if fragments and not any(f in corpus for f in fragments):
            defects.append(
                _defect(DefectKind.UNVERIFIED_QUOTE, key, index, question, rid, quote)
            )
    return defects
