"""Analysis pipeline: transcripts + project config → validated matrix.

The pipeline is stateless per run.  Progress is reported by yielding
:class:`AnalysisEvent` objects from :func:`iter_analysis`; callers that
only want the result use :func:`run_analysis`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Protocol

from qualmatrix.config import QualmatrixSettings, load_settings
from qualmatrix.errors import (
    EmptyDocumentsError,
    MissingProjectConfigError,
    NoDocumentsError,
    QualityGateError,
    TranscriptTooShortError,
)
from qualmatrix.llm.kinds import AnalysisKind, parse_kind
from qualmatrix.models import (
    DefectKind,
    GuideStructure,
    ProjectConfig,
    RawDocument,
    SpeakerHints,
    ValidationResult,
)
from qualmatrix.server.store import ResultStore, StoredRecord
from qualmatrix.stages.compose import ComposedPrompt, compose_prompt
from qualmatrix.stages.guide import extract_guide
from qualmatrix.stages.quality import find_unverified_quotes
from qualmatrix.stages.speakers import detect_speakers, merge_hints
from qualmatrix.stages.validate import validate_response

logger = logging.getLogger(__name__)

PHASE_INPUTS_CHECKED = "inputs-checked"
PHASE_GUIDE_EXTRACTED = "guide-extracted"
PHASE_SPEAKERS_DETECTED = "speakers-detected"
PHASE_PROMPT_COMPOSED = "prompt-composed"
PHASE_INVOKING_MODEL = "invoking-model"
PHASE_VALIDATING = "validating"
PHASE_STORED = "stored"
PHASE_COMPLETE = "complete"

# Row-level defects do not count towards the strict quality gate
_GATE_EXEMPT = frozenset({DefectKind.UNMATCHED_QUESTION})


class CompletionClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


@dataclass(frozen=True)
class AnalysisOutcome:
    """Everything one run produced."""

    kind: AnalysisKind
    guide: GuideStructure
    hints: SpeakerHints
    prompt: ComposedPrompt
    result: ValidationResult
    documents_analyzed: int
    stored: StoredRecord | None = None
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class AnalysisEvent:
    """Emitted at each phase transition.

    A CLI handler prints a status line; a web caller can stream the same
    events to drive a progress indicator.
    """

    phase: str
    detail: str = ""
    elapsed: float = 0.0
    outcome: AnalysisOutcome | None = None


def check_inputs(
    config: ProjectConfig | None,
    documents: Sequence[RawDocument] | None,
    min_chars: int = 100,
) -> list[RawDocument]:
    """Fail fast on inputs that cannot produce an analysis.

    Returns:
        The documents that have text.

    Raises:
        MissingProjectConfigError: *config* is ``None``.
        NoDocumentsError: There are no documents at all.
        EmptyDocumentsError: Documents exist but none has text.
        TranscriptTooShortError: The combined text is under *min_chars*.
    """
    if config is None:
        raise MissingProjectConfigError()
    if not documents:
        raise NoDocumentsError()
    usable = [d for d in documents if d.is_usable]
    if not usable:
        raise EmptyDocumentsError(len(documents))
    total = sum(len(d.content.strip()) for d in usable)
    if total < min_chars:
        raise TranscriptTooShortError(total, min_chars)
    if len(usable) < len(documents):
        logger.warning(
            "Skipping %d document(s) with no text", len(documents) - len(usable)
        )
    return usable


async def iter_analysis(
    config: ProjectConfig | None,
    documents: Sequence[RawDocument] | None,
    llm_client: CompletionClient,
    kind: AnalysisKind | str = AnalysisKind.CONTENT,
    settings: QualmatrixSettings | None = None,
    store: ResultStore | None = None,
    project_id: str | None = None,
    user_id: str | None = None,
    expected_version: int | None = None,
) -> AsyncIterator[AnalysisEvent]:
    """Run one analysis, yielding an event after each phase.

    The final event has phase ``"complete"`` and carries the
    :class:`AnalysisOutcome`.  Input, transport, stale-record and
    quality-gate errors propagate to the caller.
    """
    settings = settings or load_settings()
    kind = parse_kind(kind)
    start = time.perf_counter()

    def _event(phase: str, detail: str = "", outcome: AnalysisOutcome | None = None) -> AnalysisEvent:
        return AnalysisEvent(
            phase=phase,
            detail=detail,
            elapsed=time.perf_counter() - start,
            outcome=outcome,
        )

    usable = check_inputs(config, documents, settings.min_transcript_chars)
    assert config is not None
    total_chars = sum(len(d.content) for d in usable)
    yield _event(PHASE_INPUTS_CHECKED, f"{len(usable)} document(s), {total_chars:,} chars")

    guide = extract_guide(config, usable)
    yield _event(
        PHASE_GUIDE_EXTRACTED,
        f"{guide.source.value}: {len(guide.sections)} section(s), "
        f"{guide.question_count} question(s)",
    )

    hints = merge_hints(
        *(detect_speakers(d.content, settings.speaker_scan_lines) for d in usable)
    )
    yield _event(
        PHASE_SPEAKERS_DETECTED,
        f"{len(hints.speakers)} speaker label(s), {len(hints.profile_lines)} profile line(s)",
    )

    prompt = compose_prompt(config, guide, hints, usable, kind)
    yield _event(PHASE_PROMPT_COMPOSED, f"{prompt.char_count:,} chars")

    yield _event(PHASE_INVOKING_MODEL)
    raw = await llm_client.complete(prompt.system, prompt.user)

    yield _event(PHASE_VALIDATING, f"{len(raw):,} chars received")
    result = validate_response(raw, kind, guide)
    if settings.verify_quotes:
        unverified = find_unverified_quotes(result.data, kind, usable)
        if unverified:
            result = result.model_copy(update={"defects": [*result.defects, *unverified]})

    logger.info(
        "Validated %s analysis: status=%s rows=%d repairs=%d defects=%d",
        kind.value,
        result.status.value,
        result.row_count,
        len(result.repairs),
        len(result.defects),
    )

    if settings.strict_quality:
        gated = [d for d in result.defects if d.kind not in _GATE_EXEMPT]
        if gated:
            raise QualityGateError(len(gated))

    stored: StoredRecord | None = None
    if store is not None and project_id and user_id:
        stored = store.upsert(
            project_id,
            user_id,
            result.data,
            analysis_kind=kind.value,
            expected_version=expected_version,
        )
        yield _event(PHASE_STORED, f"version {stored.version}")

    tracker = getattr(llm_client, "tracker", None)
    outcome = AnalysisOutcome(
        kind=kind,
        guide=guide,
        hints=hints,
        prompt=prompt,
        result=result,
        documents_analyzed=len(usable),
        stored=stored,
        input_tokens=getattr(tracker, "input_tokens", 0),
        output_tokens=getattr(tracker, "output_tokens", 0),
    )
    yield _event(PHASE_COMPLETE, result.status.value, outcome)


async def run_analysis(
    config: ProjectConfig | None,
    documents: Sequence[RawDocument] | None,
    llm_client: CompletionClient,
    kind: AnalysisKind | str = AnalysisKind.CONTENT,
    settings: QualmatrixSettings | None = None,
    store: ResultStore | None = None,
    project_id: str | None = None,
    user_id: str | None = None,
    expected_version: int | None = None,
) -> AnalysisOutcome:
    """Run :func:`iter_analysis` to completion and return its outcome."""
    outcome: AnalysisOutcome | None = None
    async for event in iter_analysis(
        config,
        documents,
        llm_client,
        kind=kind,
        settings=settings,
        store=store,
        project_id=project_id,
        user_id=user_id,
        expected_version=expected_version,
    ):
        logger.debug("Phase %s (%.2fs) %s", event.phase, event.elapsed, event.detail)
        if event.outcome is not None:
            outcome = event.outcome
    assert outcome is not None
    return outcome
