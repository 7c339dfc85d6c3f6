"""
Engine error taxonomy.

Every error carries a ``kind`` string so that job results and API responses
can report the category of a failure without exposing exception classes.
"""


class EngineError(Exception):
    """Base exception for engine errors."""

    kind = "engine_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(EngineError):
    """Invalid provider configuration or missing credentials."""

    kind = "config_error"


class UpstreamError(EngineError):
    """Base class for failures talking to an upstream service."""

    kind = "upstream_error"

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        status_code: int | None = None,
    ):
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(message)


class UpstreamTransientError(UpstreamError):
    """Network error, 5xx or timeout. Retried by the HTTP client."""

    kind = "upstream_transient"


class UpstreamUnavailableError(UpstreamTransientError):
    """Retries exhausted."""

    kind = "upstream_unavailable"


class UpstreamTimeoutError(UpstreamTransientError):
    kind = "timeout"


class RateRejectedError(UpstreamError):
    """The provider quota is exhausted and the caller declined to wait."""

    kind = "rate_rejected"


class UpstreamAuthError(UpstreamError):
    """Upstream rejected the credentials (401/403)."""

    kind = "upstream_auth"


class UpstreamHTTPError(UpstreamError):
    """Any other 4xx response. Never retried."""

    kind = "upstream_http"


class PersistenceError(EngineError):
    kind = "persistence_error"


class JobCancelledError(EngineError):
    kind = "cancelled"


class AlreadyRunningError(EngineError):
    kind = "already_running"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"Job '{job_name}' is already running")


class JobNotFoundError(EngineError):
    kind = "job_not_found"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"Job '{job_name}' is not registered")


class ProviderConflictError(EngineError):
    kind = "provider_conflict"


class ProviderNotFoundError(EngineError):
    kind = "provider_not_found"


class TitleNotFoundError(EngineError):
    kind = "title_not_found"


def error_kind(error: BaseException) -> str:
    """Return the taxonomy kind of any exception."""
    if isinstance(error, EngineError):
        return error.kind
    return "unexpected_error"
