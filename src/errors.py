"""Exception hierarchy shared by the store, the pipeline and the API clients."""

from __future__ import annotations


class PersonaServiceError(Exception):
    """Base class for every error raised by this service."""


class InvalidInputError(PersonaServiceError):
    """Malformed URL or missing parameter, rejected before any external call."""

    def __init__(self, message: str, rejected: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.rejected = rejected or {}


class JobNotFoundError(InvalidInputError):
    def __init__(self, job_ids: list[str]) -> None:
        super().__init__(f"Job(s) not found: {', '.join(job_ids)}")
        self.job_ids = job_ids


class JobsNotReadyError(InvalidInputError):
    def __init__(self, job_ids: list[str]) -> None:
        super().__init__(f"Job(s) still in progress: {', '.join(job_ids)}")
        self.job_ids = job_ids


class ContextTooLargeError(InvalidInputError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Combined context is {size} characters, over the {limit} character limit"
        )
        self.size = size
        self.limit = limit


class InvalidTransitionError(PersonaServiceError):
    """A job was asked to move to a state its lifecycle does not allow."""


class StorageError(PersonaServiceError):
    """The job store's backing persistence could not be read or written."""


class UpstreamError(PersonaServiceError):
    """A wrapped failure from Firecrawl, the LLM provider or Tavus."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        detail = f"{service} error: {status_code} - {message}" if status_code else f"{service} error: {message}"
        super().__init__(detail)
        self.service = service
        self.message = message
        self.status_code = status_code


class ConcurrencyLimitError(UpstreamError):
    """Tavus refused a new conversation because too many are already live."""

    def __init__(self, service: str = "tavus", status_code: int | None = 400) -> None:
        super().__init__(
            service,
            "You have reached the maximum number of concurrent conversations. "
            "Please end an existing conversation before starting a new one.",
            status_code,
        )


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, service: str, timeout: float) -> None:
        super().__init__(service, f"request timed out after {timeout:g}s")
        self.timeout = timeout


class NoUsableContentError(PersonaServiceError):
    """Every job in the requested set ended in error."""


class SessionCreationError(PersonaServiceError):
    """The avatar API failed while creating the conversation."""
