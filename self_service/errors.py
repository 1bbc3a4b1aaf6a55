"""
Error taxonomy for the self-service operator.

Permanent errors (rendering, validation, unknown kinds) end the current
reconciliation pass and are reported verbatim. Everything else is transient
and is retried by re-entering the reconciliation loop.
"""
from typing import Optional, Sequence


class SelfServiceError(Exception):
    """Base exception for self-service operator errors."""
    pass


class RenderError(SelfServiceError):
    """A manifest template references a placeholder without a binding."""

    def __init__(self, placeholder: str, template: str):
        self.placeholder = placeholder
        self.template = template
        super().__init__(
            f"no value bound for placeholder {{{{ {placeholder} }}}}\nTemplate is: {template}"
        )


class ValidationError(SelfServiceError):
    """A manifest (or Project) is malformed and will not become valid on retry."""
    pass


class UnknownKindError(SelfServiceError):
    """API discovery has no resource for the given apiVersion and kind."""

    def __init__(self, api_version: str, kind: str):
        self.api_version = api_version
        self.kind = kind
        super().__init__(f"kind {kind} is not served by the API for apiVersion {api_version}")


class TransportError(SelfServiceError):
    """The API server could not be reached or answered with an error status."""

    # Statuses worth another attempt; None means no response at all
    RETRYABLE_STATUSES = (404, 408, 410, 429)

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        self.status = status
        self.reason = reason
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return True
        return self.status in self.RETRYABLE_STATUSES or self.status >= 500


class ConflictError(SelfServiceError):
    """Optimistic-concurrency clash (HTTP 409) on a write."""

    status = 409


class AlreadyExistsError(ConflictError):
    """Create rejected because an object with the same name already exists."""
    pass


class ApplyError(SelfServiceError):
    """Applying a manifest failed on a transport or conflict error."""
    pass


class WaitTimeoutError(SelfServiceError, TimeoutError):
    """A convergence wait exceeded its budget."""

    def __init__(self, kind: str, name: str, state: str, timeout: float):
        self.kind = kind
        self.name = name
        self.state = state
        self.timeout = timeout
        super().__init__(f"{kind} with name {name} did not reach state {state} within {timeout} seconds")


class WatchError(SelfServiceError):
    """Watching a resource failed in a way that retrying will not fix."""
    pass


class WebhookBundleError(SelfServiceError):
    """Part of the admission webhook bundle could not be written."""

    def __init__(self, failed: str, written: Sequence[str], cause: Exception):
        self.failed = failed
        self.written = list(written)
        written_str = ", ".join(self.written) if self.written else "none"
        super().__init__(f"failed to write webhook {failed} (already written: {written_str}): {cause}")


# Errors that end a reconciliation pass without retry
PERMANENT_ERRORS = (RenderError, ValidationError, UnknownKindError)
