"""Tests for the prompt loader and the matrix-analysis template."""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from qualmatrix.llm.prompts import _PROMPTS_DIR, PromptPair, _load_prompt, get_prompt

_VAR_RE = re.compile(r"\{(\w+)\}")

SYSTEM_VARIABLES = {"kind_focus", "section_keys"}
USER_VARIABLES = {
    "analysis_title",
    "mission",
    "project_block",
    "speaker_block",
    "guide_block",
    "quote_length",
    "mode_block",
    "output_schema",
    "rules",
    "document_count",
    "transcripts",
}


class TestMatrixAnalysisTemplate:
    def test_loads(self) -> None:
        pair = get_prompt("matrix-analysis")
        assert isinstance(pair, PromptPair)
        assert pair.system
        assert pair.user

    def test_variables(self) -> None:
        pair = get_prompt("matrix-analysis")
        assert set(_VAR_RE.findall(pair.system)) == SYSTEM_VARIABLES
        assert set(_VAR_RE.findall(pair.user)) == USER_VARIABLES

    def test_no_literal_braces(self) -> None:
        """Every brace belongs to a placeholder, so str.format() is safe."""
        pair = get_prompt("matrix-analysis")
        for text in (pair.system, pair.user):
            stripped = _VAR_RE.sub("", text)
            assert "{" not in stripped
            assert "}" not in stripped

    def test_format_with_dummy_values(self) -> None:
        pair = get_prompt("matrix-analysis")
        pair.system.format(**{v: "x" for v in SYSTEM_VARIABLES})
        pair.user.format(**{v: "x" for v in USER_VARIABLES})

    def test_preamble_not_in_prompt(self) -> None:
        pair = get_prompt("matrix-analysis")
        assert "Placeholders are filled" not in pair.system

    def test_placeholders_property(self) -> None:
        assert get_prompt("matrix-analysis").placeholders == SYSTEM_VARIABLES | USER_VARIABLES

    def test_render_missing_value(self) -> None:
        values = {v: "x" for v in SYSTEM_VARIABLES | USER_VARIABLES if v != "transcripts"}
        with pytest.raises(KeyError, match="transcripts"):
            get_prompt("matrix-analysis").render(**values)

    def test_render_ignores_extra_values(self) -> None:
        values = {v: "x" for v in SYSTEM_VARIABLES | USER_VARIABLES}
        system, user = get_prompt("matrix-analysis").render(unused="y", **values)
        assert system and user

    def test_cached(self) -> None:
        assert get_prompt("matrix-analysis") is get_prompt("matrix-analysis")


class TestLoaderErrors:
    def test_missing_file(self) -> None:
        with pytest.raises(FileNotFoundError):
            get_prompt("no-such-prompt")

    def test_missing_user_section(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "broken.md").write_text("## System\n\nOnly a system prompt.\n")
        monkeypatch.setattr("qualmatrix.llm.prompts._PROMPTS_DIR", tmp_path)
        _load_prompt.cache_clear()
        try:
            with pytest.raises(ValueError, match="missing '## User' section"):
                get_prompt("broken")
        finally:
            _load_prompt.cache_clear()

    def test_prompts_dir_is_package_dir(self) -> None:
        assert (_PROMPTS_DIR / "matrix-analysis.md").is_file()
