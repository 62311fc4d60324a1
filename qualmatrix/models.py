"""Pydantic data models for the analysis pipeline."""

from __future__ import annotations

import json
from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from qualmatrix.llm.kinds import AnalysisKind, get_kind_spec

# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class ProjectConfig(BaseModel):
    """Project settings supplied by the caller for one analysis run."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    project_type: str = ""
    stakeholder_type: str = ""
    country: str = ""
    therapy_area: str = ""
    research_goal: str = ""
    guide_context: str = ""
    research_hypothesis: str = ""
    research_dictionary: str = ""
    guided_themes: list[str] = Field(default_factory=list)

    @field_validator(
        "name",
        "project_type",
        "stakeholder_type",
        "country",
        "therapy_area",
        "research_goal",
        "research_hypothesis",
        "research_dictionary",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator("guide_context", mode="before")
    @classmethod
    def _guide_to_text(cls, v: object) -> object:
        """Accept a pre-parsed guide (dict/list) and keep it as JSON text."""
        if v is None:
            return ""
        if isinstance(v, (dict, list)):
            return json.dumps(v)
        return v

    @field_validator("guided_themes", mode="before")
    @classmethod
    def _split_themes(cls, v: object) -> object:
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.replace("\n", ",").split(",") if t.strip()]
        return v


class RawDocument(BaseModel):
    """One transcript's extracted text."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str = ""
    name: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, v: object) -> object:
        return "" if v is None else v

    @property
    def is_usable(self) -> bool:
        return bool(self.content.strip())

    @property
    def label(self) -> str:
        return self.name or self.id


# ---------------------------------------------------------------------------
# Discussion guide
# ---------------------------------------------------------------------------


class GuideSource(str, Enum):
    """Where a GuideStructure came from."""

    CONFIG_JSON = "config_json"
    CONFIG_TEXT = "config_text"
    DETECTED = "detected"
    DEFAULT = "default"


class GuideQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str

    @field_validator("text")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("guide question text must not be empty")
        return v


class GuideSubsection(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    ordinal: int
    questions: list[GuideQuestion] = Field(default_factory=list)


class GuideSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    ordinal: int
    subsections: list[GuideSubsection] = Field(default_factory=list)
    questions: list[GuideQuestion] = Field(default_factory=list)  # not under a subsection


class GuideStructure(BaseModel):
    """Hierarchical discussion guide: section → subsection → question.

    Built once per run and never mutated; re-parsing produces a new instance.
    """

    model_config = ConfigDict(frozen=True)

    sections: list[GuideSection] = Field(default_factory=list)
    source: GuideSource = GuideSource.DEFAULT
    raw_text: str = ""  # free-text guide passed through to the prompt verbatim

    def iter_questions(
        self,
    ) -> Iterator[tuple[GuideSection, GuideSubsection | None, GuideQuestion]]:
        """Yield every question in ordinal order with its section and subsection."""
        for section in sorted(self.sections, key=lambda s: s.ordinal):
            for question in section.questions:
                yield section, None, question
            for sub in sorted(section.subsections, key=lambda s: s.ordinal):
                for question in sub.questions:
                    yield section, sub, question

    @property
    def question_count(self) -> int:
        return sum(1 for _ in self.iter_questions())

    @property
    def is_authoritative(self) -> bool:
        """True when the researcher supplied the guide and it has questions."""
        return (
            self.source in (GuideSource.CONFIG_JSON, GuideSource.CONFIG_TEXT)
            and self.question_count > 0
        )


# ---------------------------------------------------------------------------
# Speaker hints
# ---------------------------------------------------------------------------


class SpeakerHints(BaseModel):
    """Advisory speaker labels and profile lines found in transcript text."""

    model_config = ConfigDict(frozen=True)

    speakers: list[str] = Field(default_factory=list)
    profile_lines: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.speakers and not self.profile_lines


# ---------------------------------------------------------------------------
# Analysis matrix (validated output)
# ---------------------------------------------------------------------------


class MatrixCell(BaseModel):
    """One respondent's answer to one question."""

    quote: str = ""
    summary: str = ""
    theme: str = ""
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class QuestionRow(BaseModel):
    """One guide question with every respondent's answer.

    Missing respondents mean "did not address this question".
    """

    question_type: str = ""
    question: str
    section: str | None = None
    subsection: str | None = None
    respondents: dict[str, MatrixCell] = Field(default_factory=dict)


class ContentAnalysis(BaseModel):
    title: str = "Discussion Guide-First Content Analysis"
    description: str = ""
    questions: list[QuestionRow] = Field(default_factory=list)
    content: str | None = None  # raw model output when structure was unrecoverable


class AnalysisMatrix(BaseModel):
    """The persisted document for the content-analysis kind."""

    content_analysis: ContentAnalysis

    def respondent_ids(self) -> list[str]:
        """All respondent ids in order of first appearance across rows."""
        seen: dict[str, None] = {}
        for row in self.content_analysis.questions:
            for rid in row.respondents:
                seen.setdefault(rid, None)
        return list(seen)


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------


class ValidationStatus(str, Enum):
    VALID = "valid"  # parsed and already well-formed
    REPAIRED = "repaired"  # parsed, then reshaped
    FALLBACK = "fallback"  # no JSON recovered; raw text preserved


class DefectKind(str, Enum):
    PLACEHOLDER_QUOTE = "placeholder_quote"
    EMPTY_QUOTE = "empty_quote"
    GENERIC_THEME = "generic_theme"
    PLACEHOLDER_SUMMARY = "placeholder_summary"
    UNVERIFIED_QUOTE = "unverified_quote"
    UNMATCHED_QUESTION = "unmatched_question"


class QualityDefect(BaseModel):
    """A cell or row that validated but looks ungrounded."""

    kind: DefectKind
    section_key: str
    row_index: int | None = None
    question: str = ""
    respondent_id: str = ""
    value: str = ""

    def describe(self) -> str:
        where = f"row {self.row_index + 1}" if self.row_index is not None else "matrix"
        who = f", {self.respondent_id}" if self.respondent_id else ""
        return f"{self.kind.value} at {self.section_key} {where}{who}: {self.value[:80]!r}"


class ValidationResult(BaseModel):
    """Outcome of validating one raw model response.

    ``data`` is always structurally complete for ``kind``: every section
    the kind requires is present with the right container type.
    """

    status: ValidationStatus
    kind: AnalysisKind
    data: dict[str, Any]
    repairs: list[str] = Field(default_factory=list)
    defects: list[QualityDefect] = Field(default_factory=list)
    raw: str = ""

    @property
    def row_count(self) -> int:
        section = get_kind_spec(self.kind).matrix_section
        return len(self.data.get(section.key, {}).get("questions", []))

    def matrix(self) -> AnalysisMatrix:
        """Typed view of a content-kind result.

        Raises:
            ValueError: If the result is not for the content kind.
        """
        if self.kind is not AnalysisKind.CONTENT:
            raise ValueError(f"{self.kind.value} results have no content_analysis matrix")
        return AnalysisMatrix.model_validate(self.data)
