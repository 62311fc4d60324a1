"""Prompt composition: one template, parameterised by analysis kind."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from qualmatrix.llm.kinds import (
    AnalysisKind,
    foreign_section_keys,
    get_kind_spec,
    mode_table_for,
    schema_example,
)
from qualmatrix.llm.prompts import get_prompt
from qualmatrix.models import GuideStructure, ProjectConfig, RawDocument, SpeakerHints
from qualmatrix.stages.guide import format_guide_block
from qualmatrix.stages.speakers import format_speaker_hints

logger = logging.getLogger(__name__)

PROMPT_NAME = "matrix-analysis"
NOT_SPECIFIED = "Not specified"


@dataclass(frozen=True)
class ComposedPrompt:
    """The system/user message pair sent to the model, plus its inputs."""

    kind: AnalysisKind
    system: str
    user: str
    document_count: int

    @property
    def char_count(self) -> int:
        return len(self.system) + len(self.user)


def _or_default(value: str) -> str:
    return value.strip() or NOT_SPECIFIED


def format_project_block(config: ProjectConfig) -> str:
    lines = [
        f"Project name: {_or_default(config.name)}",
        f"Project type: {_or_default(config.project_type)}",
        f"Stakeholder type: {_or_default(config.stakeholder_type)}",
        f"Country: {_or_default(config.country)}",
        f"Therapy area: {_or_default(config.therapy_area)}",
        f"Research goal: {_or_default(config.research_goal)}",
    ]
    if config.research_hypothesis.strip():
        lines.append(f"Research hypothesis: {config.research_hypothesis.strip()}")
    if config.guided_themes:
        lines.append(f"Themes to watch for: {', '.join(config.guided_themes)}")
    if config.research_dictionary.strip():
        lines.append("")
        lines.append("Research dictionary (use these terms consistently):")
        lines.append(config.research_dictionary.strip())
    return "\n".join(lines)


def format_transcripts(documents: Sequence[RawDocument]) -> str:
    """Concatenate transcripts with numbered delimiters."""
    blocks = []
    for i, doc in enumerate(documents, start=1):
        blocks.append(
            f"=== TRANSCRIPT {i}: {doc.label} ===\n"
            f"{doc.content.strip()}\n"
            f"=== END TRANSCRIPT {i} ==="
        )
    return "\n\n".join(blocks)


def _mode_block(kind: AnalysisKind, project_type: str) -> str:
    if kind is not AnalysisKind.STANDARD:
        return ""
    table = mode_table_for(project_type)
    lines = [
        "",
        f"## Research mode: {table.label}",
        "",
        "Fill mode_analysis.table with one object per insight, using these columns:",
    ]
    lines.extend(f"- {name}: {desc}" for name, desc in table.columns)
    lines.append("")
    return "\n".join(lines)


def _rules_block(kind: AnalysisKind, config: ProjectConfig) -> str:
    spec = get_kind_spec(kind)
    rules = list(spec.rules)
    foreign = sorted(foreign_section_keys(kind))
    if foreign:
        rules.append(f"NEVER include these top-level keys: {', '.join(foreign)}.")
    if config.guided_themes:
        rules.append(
            "Where respondents touch on the themes listed in the project context, "
            "name those themes explicitly."
        )
    return "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))


def compose_prompt(
    config: ProjectConfig,
    guide: GuideStructure,
    hints: SpeakerHints,
    documents: Sequence[RawDocument],
    kind: AnalysisKind,
) -> ComposedPrompt:
    """Build the prompt pair for one analysis run.

    Only documents with text are included.  The output-schema block comes
    from the kind table, so it always matches what the validator expects.
    """
    spec = get_kind_spec(kind)
    usable = [d for d in documents if d.is_usable]
    pair = get_prompt(PROMPT_NAME)

    project_type = config.project_type if kind is AnalysisKind.STANDARD else ""
    schema = json.dumps(schema_example(kind, project_type), indent=2, ensure_ascii=False)

    system, user = pair.render(
        kind_focus=spec.system_focus,
        section_keys=", ".join(spec.section_keys),
        analysis_title=spec.display_name,
        mission=spec.mission,
        project_block=format_project_block(config),
        speaker_block=format_speaker_hints(hints),
        guide_block=format_guide_block(guide),
        quote_length=spec.quote_length,
        mode_block=_mode_block(kind, config.project_type),
        output_schema=schema,
        rules=_rules_block(kind, config),
        document_count=len(usable),
        transcripts=format_transcripts(usable),
    )

    logger.debug(
        "Composed %s prompt: %d document(s), %d chars",
        kind.value,
        len(usable),
        len(system) + len(user),
    )
    return ComposedPrompt(
        kind=kind, system=system, user=user, document_count=len(usable)
    )
