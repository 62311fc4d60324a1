"""Tests for discussion guide extraction."""

from __future__ import annotations

import json

import pytest

from qualmatrix.models import GuideSource, ProjectConfig, RawDocument
from qualmatrix.stages.guide import (
    GENERAL_SECTION,
    MAX_DETECTED_QUESTIONS,
    default_guide,
    extract_guide,
    format_guide_block,
    scan_guide_text,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _doc(content: str, doc_id: str = "d1") -> RawDocument:
    return RawDocument(id=doc_id, content=content)


def _questions(guide) -> list[str]:  # type: ignore[no-untyped-def]
    return [q.text for _, _, q in guide.iter_questions()]


# ---------------------------------------------------------------------------
# Free-text guide in the project config
# ---------------------------------------------------------------------------


class TestConfigTextGuide:
    def test_section_with_two_questions(self) -> None:
        config = ProjectConfig(
            guide_context="Section A - Background\nWhat is your role?\nHow long have you been in it?\n"
        )
        guide = extract_guide(config, [])
        assert guide.source is GuideSource.CONFIG_TEXT
        assert len(guide.sections) == 1
        assert guide.sections[0].title == "Section A - Background"
        assert _questions(guide) == ["What is your role?", "How long have you been in it?"]

    def test_raw_text_kept_verbatim(self) -> None:
        text = "Section A - Background\n  What is your role?\n\nNotes for moderator: be kind"
        guide = extract_guide(ProjectConfig(guide_context=text), [])
        assert guide.raw_text == text
        assert text.strip() in format_guide_block(guide)

    def test_subsections_under_sections(self) -> None:
        text = (
            "Section B - Core Topic\n"
            "1. CURRENT PRACTICES\n"
            "How do you treat newly diagnosed patients?\n"
            "2. BARRIERS\n"
            "What stops you from prescribing more often?\n"
        )
        guide = scan_guide_text(text, source=GuideSource.CONFIG_TEXT)
        section = guide.sections[0]
        assert [s.title for s in section.subsections] == ["1. CURRENT PRACTICES", "2. BARRIERS"]
        assert section.subsections[1].questions[0].text == "What stops you from prescribing more often?"

    def test_bullet_items_count_as_questions(self) -> None:
        text = (
            "Section A - Warm-up\n"
            "- Current role and responsibilities\n"
            "- Thank you for joining today\n"
            "- Short\n"
        )
        guide = scan_guide_text(text, source=GuideSource.CONFIG_TEXT)
        assert _questions(guide) == ["Current role and responsibilities"]

    def test_numbered_questions_under_explicit_sections(self) -> None:
        text = (
            "Section 1: Awareness\n"
            "1. How did you first hear about the product?\n"
            "2. Which alternatives did you consider?\n"
        )
        guide = scan_guide_text(text, source=GuideSource.CONFIG_TEXT)
        assert len(guide.sections) == 1
        assert _questions(guide) == [
            "How did you first hear about the product?",
            "Which alternatives did you consider?",
        ]

    @pytest.mark.parametrize("dash", ["-", "\u2013", ":"])
    def test_numbered_section_header_keeps_title(self, dash: str) -> None:
        guide = scan_guide_text(f"Section 1 {dash} Background\nWhat is your role?\n")
        assert guide.sections[0].title == f"Section 1 {dash} Background"
        assert _questions(guide) == ["What is your role?"]

    def test_questions_before_any_section_go_to_general(self) -> None:
        guide = scan_guide_text("What brought you here today?\nSection A - Main\nWhy?\n")
        assert guide.sections[0].title == GENERAL_SECTION
        assert _questions(guide)[0] == "What brought you here today?"

    def test_text_without_structure_is_not_authoritative(self) -> None:
        guide = extract_guide(ProjectConfig(guide_context="talk about stuff"), [])
        assert guide.source is GuideSource.CONFIG_TEXT
        assert guide.question_count == 0
        assert not guide.is_authoritative


# ---------------------------------------------------------------------------
# JSON guide in the project config
# ---------------------------------------------------------------------------


class TestConfigJsonGuide:
    def test_sections_json(self) -> None:
        data = {
            "sections": [
                {
                    "title": "Intro",
                    "questions": ["What is your role?"],
                    "subsections": [
                        {"title": "Habits", "questions": [{"text": "How often do you prescribe X?"}]}
                    ],
                }
            ]
        }
        guide = extract_guide(ProjectConfig(guide_context=data), [])
        assert guide.source is GuideSource.CONFIG_JSON
        assert guide.is_authoritative
        entries = list(guide.iter_questions())
        assert entries[0][1] is None
        assert entries[1][1] is not None
        assert entries[1][1].title == "Habits"

    def test_theme_question_list_groups_by_theme(self) -> None:
        items = [
            {"theme": "Awareness", "question": "How did you hear of it?"},
            {"theme": "Usage", "question": "How often do you use it?"},
            {"theme": "Awareness", "question": "What did you think at first?"},
        ]
        guide = extract_guide(ProjectConfig(guide_context=json.dumps(items)), [])
        assert [s.title for s in guide.sections] == ["Awareness", "Usage"]
        assert _questions(guide) == [
            "How did you hear of it?",
            "What did you think at first?",
            "How often do you use it?",
        ]

    def test_broken_json_falls_back_to_text(self) -> None:
        text = '{"sections": [ broken\nWhat is your role?'
        guide = extract_guide(ProjectConfig(guide_context=text), [])
        assert guide.source is GuideSource.CONFIG_TEXT
        assert guide.raw_text == text


# ---------------------------------------------------------------------------
# Transcript scanning
# ---------------------------------------------------------------------------


class TestDetectedGuide:
    def test_moderator_prefix_stripped(self) -> None:
        doc = _doc(
            "Moderator: How do you choose a treatment?\n"
            "R1: Guidelines mostly.\n"
            "Moderator: What would change your mind?\n"
        )
        guide = extract_guide(ProjectConfig(), [doc])
        assert guide.source is GuideSource.DETECTED
        assert _questions(guide) == [
            "How do you choose a treatment?",
            "What would change your mind?",
        ]

    def test_documents_are_joined(self) -> None:
        docs = [_doc("Why did you switch?", "a"), _doc("", "b"), _doc("Who decides?", "c")]
        guide = extract_guide(ProjectConfig(), docs)
        assert _questions(guide) == ["Why did you switch?", "Who decides?"]

    def test_detected_questions_are_capped(self) -> None:
        text = "\n".join(f"Question number {i}?" for i in range(40))
        guide = scan_guide_text(text)
        assert guide.question_count == MAX_DETECTED_QUESTIONS

    def test_numbered_questions_are_questions(self) -> None:
        guide = scan_guide_text(
            "1. What is your current role?\n2. How do you choose a therapy?\n"
        )
        assert [s.title for s in guide.sections] == [GENERAL_SECTION]
        assert _questions(guide) == [
            "What is your current role?",
            "How do you choose a therapy?",
        ]

    def test_detected_guide_is_not_authoritative(self) -> None:
        guide = scan_guide_text("Section A - Intro\nWhat do you do?\n")
        assert guide.question_count == 1
        assert not guide.is_authoritative


# ---------------------------------------------------------------------------
# Default skeleton
# ---------------------------------------------------------------------------


class TestDefaultGuide:
    def test_nothing_detected_uses_default(self) -> None:
        guide = extract_guide(ProjectConfig(), [_doc("no structure here at all")])
        assert guide.source is GuideSource.DEFAULT
        assert [s.title for s in guide.sections] == [
            "Section A - Introduction & Background",
            "Section B - Core Topic Exploration",
            "Section C - Specific Areas of Focus",
            "Section D - Wrap-up",
        ]

    def test_default_hierarchy(self) -> None:
        guide = default_guide()
        core = guide.sections[1]
        assert [s.title for s in core.subsections] == [
            "CURRENT PRACTICES",
            "DRIVERS AND MOTIVATORS",
            "BARRIERS AND CHALLENGES",
        ]
        assert not guide.is_authoritative

    def test_question_ids_are_unique(self) -> None:
        ids = [q.id for _, _, q in default_guide().iter_questions()]
        assert len(ids) == len(set(ids))


# ---------------------------------------------------------------------------
# format_guide_block
# ---------------------------------------------------------------------------


class TestFormatGuideBlock:
    def test_json_guide_lists_questions_in_order(self) -> None:
        guide = extract_guide(
            ProjectConfig(guide_context={"sections": [{"title": "S1", "questions": ["A?", "B?"]}]}),
            [],
        )
        block = format_guide_block(guide)
        assert "exactly one row per question" in block
        assert block.index("A?") < block.index("B?")

    def test_default_block_mentions_standard_structure(self) -> None:
        block = format_guide_block(default_guide())
        assert "standard structure" in block
        assert "CURRENT PRACTICES" in block
