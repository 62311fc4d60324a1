"""Tests for the analysis kind table."""

from __future__ import annotations

import pytest

from qualmatrix.llm.kinds import (
    ALL_SECTION_KEYS,
    GENERAL_MODE_TABLE,
    KIND_SPECS,
    MODE_TABLES,
    AnalysisKind,
    Container,
    foreign_section_keys,
    get_kind_spec,
    mode_table_for,
    parse_kind,
    schema_example,
)


class TestParseKind:
    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("content", AnalysisKind.CONTENT),
            ("universal_content_analysis", AnalysisKind.CONTENT),
            ("Content-Analysis", AnalysisKind.CONTENT),
            ("pro_advanced", AnalysisKind.PRO_ADVANCED),
            ("pro", AnalysisKind.PRO_ADVANCED),
            ("standard", AnalysisKind.STANDARD),
            ("project_type", AnalysisKind.STANDARD),
            (AnalysisKind.STANDARD, AnalysisKind.STANDARD),
        ],
    )
    def test_names_and_aliases(self, name: str, kind: AnalysisKind) -> None:
        assert parse_kind(name) is kind

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Valid kinds: .*content"):
            parse_kind("sentiment")


class TestKindSpecs:
    def test_every_kind_has_a_spec(self) -> None:
        assert set(KIND_SPECS) == set(AnalysisKind)

    def test_every_kind_has_one_matrix_section(self) -> None:
        for spec in KIND_SPECS.values():
            matrices = [s for s in spec.sections if s.container is Container.QUESTIONS]
            assert len(matrices) == 1
            assert spec.matrix_section is matrices[0]

    def test_fallback_sections(self) -> None:
        assert get_kind_spec("content").fallback_section.key == "content_analysis"
        assert get_kind_spec("standard").fallback_section.key == "summary"

    def test_foreign_keys_are_disjoint(self) -> None:
        for kind in AnalysisKind:
            own = set(get_kind_spec(kind).section_keys)
            foreign = foreign_section_keys(kind)
            assert not own & foreign
            assert own | foreign == ALL_SECTION_KEYS

    def test_content_forbids_fmr_sections(self) -> None:
        assert foreign_section_keys(AnalysisKind.CONTENT) == {
            "fmr_dish",
            "mode_analysis",
            "strategic_themes",
            "summary",
        }


class TestModeTables:
    def test_known_project_type(self) -> None:
        table = mode_table_for(" Patient_Journey ")
        assert table.label == "Patient Journey"
        assert table is MODE_TABLES["patient_journey"]

    def test_unknown_project_type(self) -> None:
        assert mode_table_for("") is GENERAL_MODE_TABLE

    def test_message_family_shares_columns(self) -> None:
        assert MODE_TABLES["concept_testing"].columns == MODE_TABLES["message_testing"].columns


class TestSchemaExample:
    def test_has_exactly_the_kind_sections(self) -> None:
        for kind in AnalysisKind:
            assert tuple(schema_example(kind)) == get_kind_spec(kind).section_keys

    def test_content_row_shape(self) -> None:
        row = schema_example(AnalysisKind.CONTENT)["content_analysis"]["questions"][0]
        assert set(row) == {"question_type", "question", "section", "subsection", "respondents"}
        (cell,) = row["respondents"].values()
        assert set(cell) == {"quote", "summary", "theme", "confidence"}
        assert "50-150 words" in cell["quote"]

    def test_mode_table_columns_follow_project_type(self) -> None:
        example = schema_example(AnalysisKind.STANDARD, "kol_mapping")
        (row,) = example["mode_analysis"]["table"]
        assert list(row) == [name for name, _ in MODE_TABLES["kol_mapping"].columns]

    def test_strategic_themes_columns_fixed(self) -> None:
        example = schema_example(AnalysisKind.PRO_ADVANCED, "kol_mapping")
        (row,) = example["strategic_themes"]["table"]
        assert list(row) == ["theme", "rationale", "supporting_quotes"]
