"""Error taxonomy shared by the backend, loader and generation session.

Blank user input is not an error; submit ignores it.
"""


class TinychatError(Exception):
    """Base class for tinychat errors."""

    def is_retryable(self) -> bool:
        """Override in subclasses to tell callers whether trying again makes sense."""
        return False


class LoadError(TinychatError):
    """Model acquisition failed (storage, network, corrupt weights, out of memory).

    Fatal to that load attempt only; calling ``ModelLoader.load()`` again retries.
    """

    def __init__(self, message: str):
        super().__init__(f"Model load failed: {message}")
        self.description = message

    def is_retryable(self) -> bool:
        return True


class GenerationError(TinychatError):
    """Backend failure while generating tokens.

    Terminal for one generation only; the loaded model stays usable.
    """

    def __init__(self, message: str):
        super().__init__(f"Generation failed: {message}")
        self.description = message

    def is_retryable(self) -> bool:
        return True


class ResourceLimitError(TinychatError, RuntimeError):
    """The backend resource limit was configured twice or after inference started."""

    def __init__(self, message: str):
        super().__init__(f"Resource limit misconfigured: {message}")
