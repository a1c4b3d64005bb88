"""Exception taxonomy shared by providers, the model lifecycle and sessions.

Cancellation is not an error: it is reported through
``StreamCancelled`` only where an exception is the natural control flow,
and through ``FinishReason.CANCELLED`` everywhere else.
"""


class EnsuError(Exception):
    """Base class for all errors raised by ensu."""


class BackendError(EnsuError):
    """A backend answered with a non-success status before streaming began."""

    def __init__(self, status_code: int, body: str = "", provider: str = "remote"):
        self.status_code = status_code
        self.body = body
        self.provider = provider
        detail = f" - {body}" if body else ""
        super().__init__(f"{provider} API error: {status_code}{detail}")


class ProviderTransportError(EnsuError):
    """The connection to a backend failed outside of a running stream."""


class ModelLoadError(EnsuError):
    """An on-device model failed to initialize, download or compile."""

    def __init__(self, message: str, model_id: str, phase: str):
        self.model_id = model_id
        self.phase = phase
        super().__init__(f"Failed to load {model_id} during {phase}: {message}")


class ModelNotLoadedError(EnsuError):
    """Generation was requested before any on-device model was ready."""


class StreamCancelled(EnsuError):
    """Raised by a cancellation token when its owner has cancelled the stream."""


class SessionValidationError(EnsuError):
    """Session data rejected by a session repository."""
