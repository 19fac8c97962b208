"""
Domain: error taxonomy for the sales pipeline core.

Every error carries a stable `code` so that callers (API layer, CLI scripts)
can render a specific message without matching on exception text.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    code: str = "PIPELINE_ERROR"


class ValidationError(PipelineError):
    """Raised when a field on write is malformed or a precondition fails."""

    code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """Raised when a stage move is not allowed from the lead's current stage."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move lead from '{current}' to '{requested}'")


class PermissionDeniedError(PipelineError):
    """Raised when an actor may not mutate a lead (e.g. a seller moving someone else's lead)."""

    code = "PERMISSION_DENIED"


class NotFoundError(PipelineError):
    """Raised when a lead or user id is absent from the store."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConcurrencyConflict(PipelineError):
    """
    Raised when a conditional write no longer matches the stored lead: a claim
    lost the race, or the lead changed between the read and the write.
    """

    code = "CONCURRENCY_CONFLICT"


class PartialBatchFailure(PipelineError):
    """
    Raised when a sequential batch write stops partway.

    Batches before `failed_batch` are committed and stay committed; callers
    recover by re-running the (idempotent) job. `written` optionally lists the
    keys of the rows committed so far, when the writer tracks them.
    """

    code = "PARTIAL_BATCH_FAILURE"

    def __init__(
        self,
        committed: int,
        failed_batch: int,
        total_batches: int,
        cause: Optional[BaseException] = None,
        written: Sequence[Any] = (),
    ):
        self.committed = committed
        self.written = list(written)
        self.failed_batch = failed_batch
        self.total_batches = total_batches
        self.cause = cause
        super().__init__(
            f"Batch {failed_batch + 1}/{total_batches} failed after committing "
            f"{committed} row(s): {cause}"
        )


class ConfigurationError(PipelineError):
    """Raised when required configuration is missing or malformed."""

    code = "CONFIGURATION_ERROR"


__all__ = [
    "ConcurrencyConflict",
    "ConfigurationError",
    "InvalidTransitionError",
    "NotFoundError",
    "PartialBatchFailure",
    "PermissionDeniedError",
    "PipelineError",
    "ValidationError",
]
