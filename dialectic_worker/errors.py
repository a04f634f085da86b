"""Error taxonomy for the job pipeline.

Every failure a job can end in maps to one of these classes. The worker
stores `to_error_details()` on the failed job row, so the payload names
the stage, job and field that caused it.

- ContractViolationError: bad input caught before any write (never retried)
- ProviderError: upstream AI provider failure (retry decided by the worker)
- ContextWindowExceededError: pre-flight input budget violation
- StorageConflictError: path collision at write time (a naming defect)
- ContinuationInvariantError: internal invariant broken (fatal)
"""

from typing import Any, Optional


class DialecticError(Exception):
    """Base class for all pipeline errors."""

    kind = "dialectic_error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        job_id: Optional[str] = None,
        stage_slug: Optional[str] = None,
        fields: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.stage_slug = stage_slug
        self.fields = list(fields or [])

    def with_job(self, job_id: Optional[str], stage_slug: Optional[str]) -> "DialecticError":
        """Attach job identity once it is known further up the stack."""
        self.job_id = self.job_id or job_id
        self.stage_slug = self.stage_slug or stage_slug
        return self

    def to_error_details(self) -> dict[str, Any]:
        details: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "job_id": self.job_id,
            "stage_slug": self.stage_slug,
        }
        if self.fields:
            details["fields"] = self.fields
        return details


class ContractViolationError(DialecticError):
    kind = "contract_violation"


class MissingRequiredContextFieldError(ContractViolationError):
    """A path context lacks fields its FileType requires."""

    kind = "missing_required_context_field"

    def __init__(self, file_type: str, missing: list[str], **kwargs: Any):
        super().__init__(
            f"Cannot construct path for file type '{file_type}': "
            f"missing required field(s) {', '.join(missing)}",
            fields=missing,
            **kwargs,
        )
        self.file_type = file_type


class PlannerConfigurationError(ContractViolationError):
    """A planner could not resolve a job's relationship context."""

    kind = "planner_configuration"


class MissingSourceDocumentError(ContractViolationError):
    """A job references a source document or contribution that does not exist."""

    kind = "missing_source_document"


class InvalidJobPayloadError(ContractViolationError):
    kind = "invalid_job_payload"


class StageAlreadySubmittedError(ContractViolationError):
    """A model already has jobs or contributions for this stage iteration."""

    kind = "stage_already_submitted"


class UnknownProviderError(ContractViolationError):
    kind = "unknown_provider"


class ProviderError(DialecticError):
    """Normalized upstream provider failure (HTTP error, malformed or empty response)."""

    kind = "provider_error"
    retryable = True

    def __init__(self, message: str, *, provider: str = "", status_code: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.provider = provider
        self.status_code = status_code

    def to_error_details(self) -> dict[str, Any]:
        details = super().to_error_details()
        details["provider"] = self.provider
        if self.status_code is not None:
            details["status_code"] = self.status_code
        return details


class ContextWindowExceededError(DialecticError):
    """The assembled prompt does not fit the model's input budget."""

    kind = "context_window_exceeded"

    def __init__(self, estimated_tokens: int, limit: int, *, model: str = "", **kwargs: Any):
        super().__init__(
            f"Prompt for '{model}' needs ~{estimated_tokens:,} input tokens, "
            f"limit is {limit:,}",
            **kwargs,
        )
        self.estimated_tokens = estimated_tokens
        self.limit = limit
        self.model = model

    def to_error_details(self) -> dict[str, Any]:
        details = super().to_error_details()
        details["estimated_tokens"] = self.estimated_tokens
        details["limit"] = self.limit
        return details


class StorageConflictError(DialecticError):
    """A write hit an existing path. Two artifacts resolved to the same name."""

    kind = "storage_conflict"

    def __init__(self, path: str, **kwargs: Any):
        super().__init__(f"Storage path already exists: {path}", **kwargs)
        self.path = path

    def to_error_details(self) -> dict[str, Any]:
        details = super().to_error_details()
        details["path"] = self.path
        return details


class ContinuationInvariantError(DialecticError):
    kind = "internal_invariant_violation"
