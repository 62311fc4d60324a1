"""Speaker and respondent-profile hint detection.

Scans the head of each transcript for ``Label:`` speaker turns and for
profile lines ("Country: Germany", "15 years experience") that help the
model identify respondents.  Hints are advisory; nothing downstream
depends on them being complete or correct.
"""

from __future__ import annotations

import logging
import re

from qualmatrix.models import SpeakerHints

logger = logging.getLogger(__name__)

DEFAULT_SCAN_LINES = 300
MAX_SPEAKERS_SHOWN = 15
MAX_PROFILE_LINES_SHOWN = 12

_MIN_LABEL_LEN = 2
_MAX_LABEL_LEN = 50
_MAX_PROFILE_LINE_LEN = 200

_I = re.IGNORECASE

SPEAKER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*(Respondent\s*[\d\w-]+|R[\d\w-]+)\s*:", _I),
    re.compile(r"^\s*(Patient\s*[\d\w-]*|P[\d\w-]*)\s*:", _I),
    re.compile(r"^\s*(Participant\s*[\d\w-]*|Part\s*[\d\w-]*)\s*:", _I),
    re.compile(r"^\s*(Doctor|Dr\.?\s*[\w-]*|HCP\s*[\d\w-]*|Physician\s*[\d\w-]*)\s*:", _I),
    re.compile(r"^\s*(Pharmacist\s*[\d\w-]*|Pharm\s*[\d\w-]*)\s*:", _I),
    re.compile(r"^\s*(Nurse\s*[\d\w-]*|RN\s*[\d\w-]*)\s*:", _I),
    re.compile(r"^\s*(Clinician\s*[\d\w-]*|Clinical\s*[\d\w-]*)\s*:", _I),
    re.compile(r"^\s*((?:Interviewer|Moderator|I|M)\s*[\d\w-]*)\s*:", _I),
    # Case-sensitive: "Sarah:" or "Sarah Jones:"
    re.compile(r"^\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s*:"),
    re.compile(r"^\s*((?:Director|Manager|Head|Chief|Lead)\s*[\d\w-]*)\s*:", _I),
)

PROFILE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Country[:\s]+([^\n]+)", _I),
    re.compile(r"Location[:\s]+([^\n]+)", _I),
    re.compile(r"Region[:\s]+([^\n]+)", _I),
    re.compile(r"City[:\s]+([^\n]+)", _I),
    re.compile(r"Segment[:\s]+([^\n]+)", _I),
    re.compile(r"Specialty[:\s]+([^\n]+)", _I),
    re.compile(r"Department[:\s]+([^\n]+)", _I),
    re.compile(r"Institution[:\s]+([^\n]+)", _I),
    re.compile(r"Hospital[:\s]+([^\n]+)", _I),
    re.compile(r"Practice[:\s]+([^\n]+)", _I),
    re.compile(r"Experience[:\s]+([^\n]+)", _I),
    re.compile(r"\b\d+\s+years?\s+(?:of\s+)?experience", _I),
    re.compile(r"\b\d+\s+years?\s+in\s+[^\n]+", _I),
    re.compile(r"Background[:\s]+([^\n]+)", _I),
    re.compile(r"Usage[:\s]+([^\n]+)", _I),
    re.compile(r"\bUses?\b[:\s]+([^\n]+)", _I),
    re.compile(r"Preference[:\s]+([^\n]+)", _I),
    re.compile(r"Currently\s+using[:\s]+([^\n]+)", _I),
)


def detect_speakers(text: str, max_lines: int = DEFAULT_SCAN_LINES) -> SpeakerHints:
    """Collect speaker labels and profile lines from the first *max_lines* lines.

    Every pattern is tried against every line, so one line can contribute
    more than one label.  Both lists keep first-appearance order without
    duplicates.
    """
    speakers: dict[str, None] = {}
    profile: dict[str, None] = {}

    for raw_line in text.splitlines()[:max_lines]:
        line = raw_line.strip()
        if not line:
            continue

        for pattern in SPEAKER_PATTERNS:
            match = pattern.match(line)
            if match:
                label = match.group(1).strip()
                if _MIN_LABEL_LEN <= len(label) <= _MAX_LABEL_LEN:
                    speakers.setdefault(label, None)

        if len(line) < _MAX_PROFILE_LINE_LEN and any(
            p.search(line) for p in PROFILE_PATTERNS
        ):
            profile.setdefault(line, None)

    logger.debug(
        "Detected %d speaker label(s), %d profile line(s)", len(speakers), len(profile)
    )
    return SpeakerHints(speakers=list(speakers), profile_lines=list(profile))


def merge_hints(*hints: SpeakerHints) -> SpeakerHints:
    """Union several documents' hints, keeping first-appearance order."""
    speakers: dict[str, None] = {}
    profile: dict[str, None] = {}
    for h in hints:
        for s in h.speakers:
            speakers.setdefault(s, None)
        for p in h.profile_lines:
            profile.setdefault(p, None)
    return SpeakerHints(speakers=list(speakers), profile_lines=list(profile))


def _capped(items: list[str], limit: int) -> list[str]:
    shown = items[:limit]
    if len(items) > limit:
        shown.append(f"... and {len(items) - limit} more")
    return shown


def format_speaker_hints(hints: SpeakerHints) -> str:
    """Render the respondent block for the prompt."""
    lines: list[str] = []
    if hints.speakers:
        lines.append("Detected speaker labels:")
        lines.extend(f"- {s}" for s in _capped(hints.speakers, MAX_SPEAKERS_SHOWN))
    else:
        lines.append(
            "No clear speakers detected - use generic identifiers such as "
            "Respondent-01, Respondent-02."
        )

    lines.append("")
    if hints.profile_lines:
        lines.append("Respondent profile information:")
        lines.extend(
            f"- {p}" for p in _capped(hints.profile_lines, MAX_PROFILE_LINES_SHOWN)
        )
    else:
        lines.append("Limited profile information available in the transcripts.")
    return "\n".join(lines)
