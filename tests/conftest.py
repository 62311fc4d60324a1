"""Shared test fixtures for Qualmatrix tests."""

from __future__ import annotations

import json

import pytest

from qualmatrix.config import QualmatrixSettings
from qualmatrix.llm.client import LLMUsageTracker
from qualmatrix.models import ProjectConfig, RawDocument

TRANSCRIPT_ONE = """\
Interview 1 - Germany
Country: Germany
Specialty: Oncology
15 years experience

Moderator: Can you tell me about your current role?
Respondent 1: I lead the oncology unit at a university hospital and see around forty patients a week.
Moderator: What influences your choice of first-line treatment?
Respondent 1: Mostly the guidelines, but honestly the reimbursement situation decides a lot for us.
"""

TRANSCRIPT_TWO = """\
Interview 2 - France
Country: France
Specialty: Haematology

Moderator: Can you tell me about your current role?
Dr. Martin: I run a haematology practice in Lyon with two partners.
Moderator: What influences your choice of first-line treatment?
Dr. Martin: Patient age and comorbidities come first, then what the tumour board recommends.
"""

GUIDE_TEXT = """\
Section A - Background
Can you tell me about your current role?
Section B - Treatment decisions
What influences your choice of first-line treatment?
"""


class FakeLLMClient:
    """Stands in for LLMClient: returns canned text and records prompts."""

    def __init__(self, response: str = "", error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str]] = []
        self.tracker = LLMUsageTracker()

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        self.tracker.record(1200, 300)
        return self.response


def matrix_response(rows: list[dict]) -> str:
    """Serialise a content-analysis response the way a model would send it."""
    return "```json\n" + json.dumps({"content_analysis": {"questions": rows}}) + "\n```"


@pytest.fixture
def settings() -> QualmatrixSettings:
    """Settings that never touch a real provider or .env file."""
    return QualmatrixSettings(
        _env_file=None,  # type: ignore[call-arg]
        llm_provider="openai",
        openai_api_key="sk-test",
        verify_quotes=True,
        strict_quality=False,
    )


@pytest.fixture
def documents() -> list[RawDocument]:
    return [
        RawDocument(id="doc-1", name="interview-1.txt", content=TRANSCRIPT_ONE),
        RawDocument(id="doc-2", name="interview-2.txt", content=TRANSCRIPT_TWO),
    ]


@pytest.fixture
def project() -> ProjectConfig:
    return ProjectConfig(
        name="Oncology HCP study",
        project_type="treatment_decision",
        stakeholder_type="HCP",
        country="Germany, France",
        therapy_area="Oncology",
        research_goal="Understand first-line treatment choice",
        guide_context=GUIDE_TEXT,
    )


@pytest.fixture
def grounded_rows() -> list[dict]:
    """Rows whose quotes occur verbatim in the two transcripts."""
    return [
        {
            "question_type": "Section A - Background",
            "question": "Can you tell me about your current role?",
            "respondents": {
                "Respondent 1": {
                    "quote": "I lead the oncology unit at a university hospital",
                    "summary": "Leads a hospital oncology unit.",
                    "theme": "Senior hospital oncologist",
                    "confidence": 0.9,
                },
                "Dr. Martin": {
                    "quote": "I run a haematology practice in Lyon with two partners.",
                    "summary": "Runs a small private practice.",
                    "theme": "Community haematologist",
                },
            },
        },
        {
            "question_type": "Section B - Treatment decisions",
            "question": "What influences your choice of first-line treatment?",
            "respondents": {
                "Respondent 1": {
                    "quote": "honestly the reimbursement situation decides a lot for us",
                    "summary": "Reimbursement outweighs guidelines in practice.",
                    "theme": "Access constraints drive choice",
                },
            },
        },
    ]
