"""Prompt templates stored as Markdown.

A template file has a free-form preamble for maintainers, then a
``## System`` and a ``## User`` heading.  Both parts use ``str.format``
placeholders and never literal braces: JSON examples are rendered by the
composer and substituted in whole.
"""

from __future__ import annotations

import re
import string
from functools import cache
from pathlib import Path
from typing import NamedTuple

_PROMPTS_DIR = Path(__file__).resolve().parent

_HEADING_RE = re.compile(r"^##\s+(system|user)\s*$", re.IGNORECASE | re.MULTILINE)


def _placeholders(template: str) -> frozenset[str]:
    return frozenset(
        field for _, field, _, _ in string.Formatter().parse(template) if field
    )


class PromptPair(NamedTuple):
    """System and user templates loaded from one file."""

    system: str
    user: str

    @property
    def placeholders(self) -> frozenset[str]:
        return _placeholders(self.system) | _placeholders(self.user)

    def render(self, **values: object) -> tuple[str, str]:
        """Fill both templates.

        Raises:
            KeyError: A placeholder has no value.  Extra values are ignored.
        """
        missing = self.placeholders - values.keys()
        if missing:
            raise KeyError(f"No value for prompt placeholder(s): {', '.join(sorted(missing))}")
        return self.system.format(**values), self.user.format(**values)


@cache
def _load_prompt(name: str) -> PromptPair:
    path = _PROMPTS_DIR / f"{name}.md"
    text = path.read_text(encoding="utf-8")

    headings = list(_HEADING_RE.finditer(text))
    parts: dict[str, str] = {}
    for heading, following in zip(headings, [*headings[1:], None]):
        end = following.start() if following else len(text)
        parts[heading.group(1).lower()] = text[heading.end() : end].strip()

    for part in ("system", "user"):
        if part not in parts:
            raise ValueError(f"Prompt file {path.name} missing '## {part.title()}' section")
    return PromptPair(system=parts["system"], user=parts["user"])


def get_prompt(name: str) -> PromptPair:
    """Return the cached template pair for *name* (e.g. ``"matrix-analysis"``)."""
    return _load_prompt(name)
