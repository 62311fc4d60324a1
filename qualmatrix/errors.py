"""Typed failures that propagate to callers.

Parse and shape problems in model output never appear here. The validator
absorbs them (see :mod:`qualmatrix.stages.validate`). Everything below is
something the caller has to present to a person.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Input errors: raised before any LLM call
# ---------------------------------------------------------------------------


class InputError(ValueError):
    """The analysis cannot start with the inputs provided."""


class MissingProjectConfigError(InputError):
    def __init__(self) -> None:
        super().__init__(
            "No project configuration supplied. "
            "Create or select a project before running an analysis."
        )


class NoDocumentsError(InputError):
    def __init__(self) -> None:
        super().__init__(
            "No documents found for this project. "
            "Upload at least one transcript before running an analysis."
        )


class EmptyDocumentsError(InputError):
    def __init__(self, document_count: int) -> None:
        self.document_count = document_count
        super().__init__(
            f"{document_count} document(s) found but none contain any text. "
            "They may still be processing, or the upload failed to extract text."
        )


class TranscriptTooShortError(InputError):
    def __init__(self, length: int, minimum: int) -> None:
        self.length = length
        self.minimum = minimum
        super().__init__(
            f"Transcript content too short for meaningful analysis "
            f"({length} characters, need at least {minimum})."
        )


# ---------------------------------------------------------------------------
# Transport errors: raised by the LLM client
# ---------------------------------------------------------------------------


class LLMTransportError(RuntimeError):
    """The request to the model endpoint did not produce a response."""


class LLMConnectionError(LLMTransportError):
    """Network failure or timeout reaching the endpoint."""


class LLMStatusError(LLMTransportError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(message)


class LLMConfigurationError(LLMTransportError):
    """Credentials, endpoint or deployment are missing or wrong."""


# ---------------------------------------------------------------------------
# Post-validation errors
# ---------------------------------------------------------------------------


class StaleRecordError(RuntimeError):
    """An upsert lost an optimistic-concurrency race."""

    def __init__(self, project_id: str, user_id: str, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Analysis for project {project_id} / user {user_id} changed while this "
            f"run was in progress (expected version {expected}, found {actual}). "
            "Reload and run the analysis again."
        )


class QualityGateError(RuntimeError):
    """Strict quality mode rejected a matrix with placeholder content."""

    def __init__(self, defect_count: int) -> None:
        self.defect_count = defect_count
        super().__init__(
            f"Analysis rejected: {defect_count} cell(s) contain placeholder or "
            "unverifiable content. Set QUALMATRIX_STRICT_QUALITY=false to accept "
            "flagged results."
        )
