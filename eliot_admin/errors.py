"""Exception taxonomy shared by clients, services and the HTTP layer."""
from __future__ import annotations


class ConsoleError(RuntimeError):
    """Base class for every recoverable console failure."""

    status_code: int = 400


class UploadError(ConsoleError):
    """Raised when a document upload is rejected or returns no job."""

    status_code = 502


class ApiCallError(ConsoleError):
    """Raised when a remote function answers with a non-success status."""

    status_code = 502

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class JobLookupError(ApiCallError):
    """Raised when the job service cannot return the requested job."""


class GenerationStartError(ApiCallError):
    """Raised when the job service refuses to start artifact generation."""


class EvidenceLoadError(ConsoleError):
    status_code = 502


class EvidenceSaveError(ConsoleError):
    status_code = 502


class ArtifactDownloadError(ConsoleError):
    status_code = 502


class PollTimeoutError(ConsoleError):
    """Raised when a polling loop exceeds its wall-clock budget."""

    status_code = 504


class JobFailedError(ConsoleError):
    """Raised when the remote job reports ``Failed`` or carries an error."""

    status_code = 502


class JsonParseError(ConsoleError):
    """Raised for user supplied JSON that cannot be parsed or repaired."""


class FormError(ConsoleError):
    """Raised when required form input is missing or inconsistent."""


class InvalidTransitionError(ConsoleError):
    """Raised when a workflow operation is not allowed from the current step."""

    status_code = 409


class WorkflowBusyError(ConsoleError):
    """Raised when a remote call is started while another one is in flight."""

    status_code = 409


class SessionNotFoundError(ConsoleError):
    status_code = 404


__all__ = [
    "ApiCallError",
    "ArtifactDownloadError",
    "ConsoleError",
    "EvidenceLoadError",
    "EvidenceSaveError",
    "FormError",
    "GenerationStartError",
    "InvalidTransitionError",
    "JobFailedError",
    "JobLookupError",
    "JsonParseError",
    "PollTimeoutError",
    "SessionNotFoundError",
    "UploadError",
    "WorkflowBusyError",
]
