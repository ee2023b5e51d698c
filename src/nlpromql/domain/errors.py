"""Error taxonomy shared by the index builder, resolver and adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from nlpromql.domain.build_status import BuildStage


class NlPromqlError(Exception):
    """Base error for the nlpromql package."""


class ExternalServiceError(NlPromqlError):
    """A collaborator call (LLM or monitoring store) failed or timed out."""

    def __init__(self, service: str, message: str, *, batch: str | None = None) -> None:
        self.service = service
        self.message = message
        self.batch = batch
        detail = f"{service}: {message}"
        if batch:
            detail = f"{detail} (batch {batch})"
        super().__init__(detail)


class SerializationError(NlPromqlError):
    """Persisted state or a collaborator payload could not be decoded."""


class CandidateValidationError(NlPromqlError):
    """A candidate token field from query understanding had the wrong shape."""

    def __init__(self, field: str, value: Any) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Expected a list of strings for {field!r}, got {type(value).__name__}")


class BatchDispatchError(NlPromqlError):
    """One or more batches failed; raised only after every batch finished."""

    def __init__(self, label: str, first_error: BaseException, outcome: Any) -> None:
        self.label = label
        self.first_error = first_error
        self.outcome = outcome
        super().__init__(f"{label}: {len(outcome.failures)} of {outcome.total} batches failed: {first_error}")


class IndexBuildError(NlPromqlError):
    """A build stage failed; nothing from the build was persisted or published."""

    def __init__(self, stage: BuildStage, cause: BaseException, *, partial: Any = None) -> None:
        self.stage = stage
        self.cause = cause
        self.partial = partial
        super().__init__(f"Index build failed during {stage.value}: {cause}")


class BuildAlreadyRunningError(NlPromqlError):
    """A build was requested while another one is still in flight."""


class InvalidBuildTransitionError(NlPromqlError):
    """Raised when the build status state machine is driven out of order."""
