"""Discussion guide extraction.

The guide comes from one of three places, in order of preference:

1. The project's ``guide_context``: structured JSON, or free text that is
   passed to the prompt verbatim and also parsed best-effort for row order.
2. A heuristic scan of the transcripts for section headers, subsection
   headers and question lines.
3. A fixed four-section skeleton when nothing else is available.

Extraction never raises; malformed input degrades to the next source.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import IntEnum

from pydantic import ValidationError

from qualmatrix.models import (
    GuideQuestion,
    GuideSection,
    GuideSource,
    GuideStructure,
    GuideSubsection,
    ProjectConfig,
    RawDocument,
)

logger = logging.getLogger(__name__)

GENERAL_SECTION = "General"

# Per-family caps when scanning transcripts
MAX_DETECTED_SECTIONS = 15
MAX_DETECTED_SUBSECTIONS = 20
MAX_DETECTED_QUESTIONS = 25

_I = re.IGNORECASE
_M = re.MULTILINE
_MI = re.MULTILINE | re.IGNORECASE

# Explicit "Section X" headers always open a section
_EXPLICIT_SECTION_PATTERNS = (
    re.compile(r"^[ \t]*Section\s+[A-Z][ \t]*[-–][ \t]*[^\n]+", _MI),
    re.compile(r"^[ \t]*Section\s+\d+[ \t]*[-–:]?[ \t]*[^\n]+", _MI),
)
_ITEM_SECTION_PATTERNS = (
    re.compile(r"^[ \t]*[A-Z]\.\s+[A-Z][^\n]+$", _M),
    re.compile(r"^[ \t]*\d+\.\s+[A-Z][^\n]+$", _M),
)
_SUBSECTION_PATTERNS = (
    re.compile(r"^[ \t]*\d+\.[ \t]*[A-Z][A-Z \t/]+$", _M),
    re.compile(r"^[ \t]*[a-z]\)[ \t]*[A-Z][^\n]+$", _M),
    re.compile(r"^[ \t]*[IVX]+\.[ \t]*[A-Z][^\n]+$", _M),
)
_QUESTION_PATTERNS = (
    re.compile(r"^[ \t]*[A-Z][^\n]*\?[ \t]*$", _M),
    re.compile(r"Moderator:[ \t]*[^\n]+\?", _I),
    re.compile(r"Interviewer:[ \t]*[^\n]+\?", _I),
    re.compile(r"^[ \t]*Q\d*[:.][ \t]*[^\n]+\?", _M),
)
# Bullet or numbered items in a researcher-supplied guide
_ITEM_PATTERN = re.compile(r"^[ \t]*(?:[-•*]|\d+[.)]|[a-z][.)])[ \t]+([^\n]+)$", _M)
_MIN_ITEM_LEN = 10

_BOILERPLATE = (
    "thank you",
    "gdpr",
    "consent",
    "minutes",
    "introduction",
    "confidential",
    "recording",
    "disclosure",
    "welcome",
    "agenda",
)

_PREFIX_RE = re.compile(r"^(?:(?:Moderator|Interviewer)\s*:|Q\d*[:.])\s*", re.IGNORECASE)


class _Level(IntEnum):
    SECTION = 0
    SUBSECTION = 1
    QUESTION = 2


@dataclass
class _LineHits:
    """Everything the scanner found on one line."""

    offset: int
    text: str
    explicit_section: bool = False
    levels: set[_Level] = field(default_factory=set)
    item: bool = False


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _iter_family(
    text: str, patterns: Iterable[re.Pattern[str]], limit: int | None
) -> list[tuple[int, str, re.Pattern[str]]]:
    """Run one pattern family, de-duplicated by text, capped at *limit*."""
    seen: set[str] = set()
    found: list[tuple[int, str, re.Pattern[str]]] = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            matched = match.group(0)
            stripped = matched.strip()
            if not stripped or stripped in seen:
                continue
            seen.add(stripped)
            offset = match.start() + (len(matched) - len(matched.lstrip()))
            found.append((offset, stripped, pattern))
    return found[:limit] if limit is not None else found


def _collect_hits(text: str, *, detected: bool) -> list[_LineHits]:
    """Gather family matches keyed by line, in text order."""
    by_line: dict[int, _LineHits] = {}

    def _hit(offset: int, matched: str) -> _LineHits:
        line_no = text.count("\n", 0, offset)
        hits = by_line.get(line_no)
        if hits is None:
            hits = by_line[line_no] = _LineHits(offset=offset, text=matched)
        return hits

    limits = (
        (MAX_DETECTED_SECTIONS, MAX_DETECTED_SUBSECTIONS, MAX_DETECTED_QUESTIONS)
        if detected
        else (None, None, None)
    )

    section_patterns = _EXPLICIT_SECTION_PATTERNS + _ITEM_SECTION_PATTERNS
    for offset, matched, pattern in _iter_family(text, section_patterns, limits[0]):
        hits = _hit(offset, matched)
        hits.levels.add(_Level.SECTION)
        if pattern in _EXPLICIT_SECTION_PATTERNS:
            hits.explicit_section = True
            hits.text = matched

    for offset, matched, _ in _iter_family(text, _SUBSECTION_PATTERNS, limits[1]):
        _hit(offset, matched).levels.add(_Level.SUBSECTION)

    for offset, matched, _ in _iter_family(text, _QUESTION_PATTERNS, limits[2]):
        hits = _hit(offset, matched)
        hits.levels.add(_Level.QUESTION)
        if _Level.SECTION not in hits.levels and _Level.SUBSECTION not in hits.levels:
            hits.text = matched

    if not detected:
        for match in _ITEM_PATTERN.finditer(text):
            body = match.group(1).strip()
            if len(body) <= _MIN_ITEM_LEN:
                continue
            if any(word in body.lower() for word in _BOILERPLATE):
                continue
            offset = match.start(1)
            hits = _hit(offset, match.group(0).strip())
            hits.item = True

    return [by_line[k] for k in sorted(by_line)]


def _classify(
    hits: _LineHits, *, have_section: bool, explicit_headers: bool
) -> _Level | None:
    """Pick one level for a line several families matched.

    Explicit ``Section X`` headers win.  Any other line ending in ``?`` is
    a question, even when only a heading family matched it.  A line both
    families call a heading is a subsection once a section is open, and a
    section otherwise.  When the text has explicit section headers,
    ``1. Title`` lines are items, not sections.
    """
    if hits.explicit_section:
        return _Level.SECTION
    if hits.text.rstrip().endswith("?"):
        return _Level.QUESTION
    if _Level.SUBSECTION in hits.levels and (
        _Level.SECTION not in hits.levels or have_section
    ):
        return _Level.SUBSECTION
    if _Level.SECTION in hits.levels and not explicit_headers:
        return _Level.SECTION
    if _Level.QUESTION in hits.levels or hits.item:
        return _Level.QUESTION
    return None


def _clean_heading(text: str) -> str:
    return text.strip().rstrip(":").strip()


def _clean_question(text: str) -> str:
    text = text.strip()
    text = _PREFIX_RE.sub("", text)
    # Bullet or number prefix on item lines
    text = re.sub(r"^(?:[-•*]|\d+[.)]|[a-z][.)])\s+", "", text)
    return text.strip()


class _GuideBuilder:
    """Accumulates sections, subsections and questions in reading order."""

    def __init__(self) -> None:
        self._sections: list[dict] = []
        self._current: dict | None = None
        self._sub: dict | None = None
        self._seen_questions: set[str] = set()
        self._count = 0

    @property
    def has_section(self) -> bool:
        return self._current is not None

    def section(self, title: str) -> None:
        self._current = {"title": title, "subsections": [], "questions": []}
        self._sections.append(self._current)
        self._sub = None

    def subsection(self, title: str) -> None:
        if self._current is None:
            self.section(GENERAL_SECTION)
        self._sub = {"title": title, "questions": []}
        self._current["subsections"].append(self._sub)  # type: ignore[index]

    def question(self, text: str) -> None:
        if not text or text.lower() in self._seen_questions:
            return
        if self._current is None:
            self.section(GENERAL_SECTION)
        self._seen_questions.add(text.lower())
        self._count += 1
        target = self._sub if self._sub is not None else self._current
        target["questions"].append(GuideQuestion(id=f"q{self._count}", text=text))  # type: ignore[index]

    def build(self, source: GuideSource, raw_text: str = "") -> GuideStructure:
        sections = [
            GuideSection(
                title=s["title"],
                ordinal=i,
                questions=s["questions"],
                subsections=[
                    GuideSubsection(title=sub["title"], ordinal=j, questions=sub["questions"])
                    for j, sub in enumerate(s["subsections"], start=1)
                ],
            )
            for i, s in enumerate(self._sections, start=1)
        ]
        return GuideStructure(sections=sections, source=source, raw_text=raw_text)


def scan_guide_text(
    text: str,
    *,
    source: GuideSource = GuideSource.DETECTED,
) -> GuideStructure:
    """Heuristically parse guide structure out of free text.

    With ``source=DETECTED`` (transcript scanning) each family is capped.
    With ``source=CONFIG_TEXT`` there are no caps, bullet and numbered
    items also count as questions, and *text* is kept as ``raw_text``.
    """
    detected = source is not GuideSource.CONFIG_TEXT
    builder = _GuideBuilder()

    line_hits = _collect_hits(text, detected=detected)
    explicit_headers = any(h.explicit_section for h in line_hits)

    for hits in line_hits:
        level = _classify(
            hits, have_section=builder.has_section, explicit_headers=explicit_headers
        )
        if level is None:
            continue
        if level is _Level.SECTION:
            builder.section(_clean_heading(hits.text))
        elif level is _Level.SUBSECTION:
            builder.subsection(_clean_heading(hits.text))
        else:
            builder.question(_clean_question(hits.text))

    return builder.build(source, raw_text="" if detected else text)


# ---------------------------------------------------------------------------
# Structured guide_context
# ---------------------------------------------------------------------------


def _question_text(item: object) -> str:
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, dict):
        for key in ("text", "question", "title"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def _structure_from_json(data: object) -> GuideStructure | None:
    """Build a guide from ``{"sections": [...]}`` or a ``[{theme, question}]`` list."""
    builder = _GuideBuilder()

    if isinstance(data, dict) and isinstance(data.get("sections"), list):
        for section in data["sections"]:
            if not isinstance(section, dict):
                continue
            builder.section(str(section.get("title") or GENERAL_SECTION).strip())
            for q in section.get("questions") or []:
                builder.question(_question_text(q))
            for sub in section.get("subsections") or []:
                if not isinstance(sub, dict):
                    continue
                builder.subsection(str(sub.get("title") or "").strip() or GENERAL_SECTION)
                for q in sub.get("questions") or []:
                    builder.question(_question_text(q))
    elif isinstance(data, list):
        # [{theme, question}] as stored by the projects API; group by theme
        grouped: dict[str, list[str]] = {}
        for item in data:
            theme = GENERAL_SECTION
            if isinstance(item, dict):
                theme = str(item.get("theme") or item.get("section") or GENERAL_SECTION).strip()
            grouped.setdefault(theme, []).append(_question_text(item))
        for theme, questions in grouped.items():
            builder.section(theme)
            for q in questions:
                builder.question(q)
    else:
        return None

    structure = builder.build(GuideSource.CONFIG_JSON)
    return structure if structure.question_count else None


def _parse_config_guide(guide_context: str) -> GuideStructure:
    text = guide_context.strip()
    if text[:1] in ("{", "["):
        try:
            structure = _structure_from_json(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.debug("guide_context is not a usable JSON guide: %s", exc)
            structure = None
        if structure is not None:
            return structure
    return scan_guide_text(guide_context, source=GuideSource.CONFIG_TEXT)


# ---------------------------------------------------------------------------
# Default skeleton
# ---------------------------------------------------------------------------

_DEFAULT_GUIDE: tuple[tuple[str, tuple[str, ...], tuple[tuple[str, tuple[str, ...]], ...]], ...] = (
    (
        "Section A - Introduction & Background",
        (
            "Warm-up questions",
            "Professional background and experience",
            "Current role and responsibilities",
            "Familiarity with topic area",
        ),
        (),
    ),
    (
        "Section B - Core Topic Exploration",
        (),
        (
            ("CURRENT PRACTICES", (
                "Current approaches and methods",
                "Decision-making processes",
                "Key considerations and criteria",
            )),
            ("DRIVERS AND MOTIVATORS", (
                "What influences choices",
                "Primary decision factors",
                "Must-haves versus nice-to-haves",
            )),
            ("BARRIERS AND CHALLENGES", (
                "Obstacles and friction points",
                "Concerns and hesitations",
                "Unmet needs",
            )),
        ),
    ),
    (
        "Section C - Specific Areas of Focus",
        (),
        (
            ("PRODUCT/SERVICE EVALUATION", (
                "Experience and perceptions",
                "Strengths and weaknesses",
                "Comparison with alternatives",
            )),
            ("FUTURE CONSIDERATIONS", (
                "Anticipated changes",
                "Emerging needs",
                "Innovation opportunities",
            )),
        ),
    ),
    (
        "Section D - Wrap-up",
        (
            "Final thoughts and reflections",
            "Additional comments",
            "Closing questions",
        ),
        (),
    ),
)


def default_guide() -> GuideStructure:
    """The generic four-section skeleton used when no guide is available."""
    builder = _GuideBuilder()
    for title, questions, subsections in _DEFAULT_GUIDE:
        builder.section(title)
        for q in questions:
            builder.question(q)
        for sub_title, sub_questions in subsections:
            builder.subsection(sub_title)
            for q in sub_questions:
                builder.question(q)
    return builder.build(GuideSource.DEFAULT)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def extract_guide(config: ProjectConfig, documents: Sequence[RawDocument]) -> GuideStructure:
    """Resolve the discussion guide for one analysis run."""
    if config.guide_context.strip():
        guide = _parse_config_guide(config.guide_context)
        logger.info(
            "Guide from project config (%s): %d section(s), %d question(s)",
            guide.source.value,
            len(guide.sections),
            guide.question_count,
        )
        return guide

    combined = "\n\n".join(d.content for d in documents if d.is_usable)
    guide = scan_guide_text(combined)
    if guide.sections:
        logger.info(
            "Guide detected in transcripts: %d section(s), %d question(s)",
            len(guide.sections),
            guide.question_count,
        )
        return guide

    logger.info("No guide structure found; using default skeleton")
    return default_guide()


def _render_hierarchy(guide: GuideStructure) -> list[str]:
    lines: list[str] = []
    for section in sorted(guide.sections, key=lambda s: s.ordinal):
        lines.append(f"{section.title}")
        for q in section.questions:
            lines.append(f"  - {q.text}")
        for sub in sorted(section.subsections, key=lambda s: s.ordinal):
            lines.append(f"  {sub.title}")
            for q in sub.questions:
                lines.append(f"    - {q.text}")
    return lines


def format_guide_block(guide: GuideStructure) -> str:
    """Render the discussion-guide block of the prompt."""
    if guide.source is GuideSource.CONFIG_TEXT:
        return (
            "The researcher supplied this discussion guide. Follow its structure and "
            "wording exactly:\n\n" + guide.raw_text.strip()
        )
    if guide.source is GuideSource.CONFIG_JSON:
        header = (
            f"The researcher supplied this discussion guide ({guide.question_count} "
            "questions). Produce exactly one row per question, in this order:"
        )
    elif guide.source is GuideSource.DETECTED:
        header = (
            "No guide was supplied. This structure was detected in the transcripts; "
            "use it as the starting point and add questions the interviewer clearly asked:"
        )
    else:
        header = (
            "No guide was supplied or detected. Organise the analysis with this "
            "standard structure, adapting question wording to the transcripts:"
        )
    return "\n".join([header, "", *_render_hierarchy(guide)])
