"""Model acquisition.

Wraps the backend load so it happens once per process, off the event loop,
after the backend resource limit has been configured.
"""

import asyncio
import logging
from collections.abc import Callable

from ..backend import InferenceBackend, ModelHandle
from ..config import DEFAULT_RESOURCE_LIMIT_BYTES
from ..errors import LoadError

logger = logging.getLogger(__name__)


class ModelLoader:
    """Loads the model once and hands out the same handle afterwards.

    Progress reported by the backend from its worker thread is delivered on the
    event loop, clamped to [0.0, 1.0] and never decreasing. Every load attempt
    ends with a 1.0 notification, delivered together with the handle or just
    before the LoadError.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        resource_limit_bytes: int = DEFAULT_RESOURCE_LIMIT_BYTES,
    ) -> None:
        self._backend = backend
        self._resource_limit_bytes = resource_limit_bytes
        self._handle: ModelHandle | None = None
        self._progress = 0.0
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def handle(self) -> ModelHandle | None:
        return self._handle

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    @property
    def progress(self) -> float:
        """Latest load fraction delivered."""
        return self._progress

    async def load(self, on_progress: Callable[[float], None] | None = None) -> ModelHandle:
        """Load the model, or return the already loaded handle.

        Concurrent callers wait for the same load.

        Args:
            on_progress: Called on the event loop with fraction-complete values

        Returns:
            The loaded model handle (same object on every call)

        Raises:
            LoadError: If the backend fails; calling again retries
        """
        if self._handle is not None:
            return self._handle

        async with self._lock:
            if self._handle is not None:
                return self._handle

            # Must precede the first inference step; backend enforces it
            if self._backend.resource_limit is None:
                self._backend.configure_resource_limit(self._resource_limit_bytes)

            loop = asyncio.get_running_loop()
            self._progress = 0.0

            def deliver(fraction: float) -> None:
                clamped = min(max(fraction, 0.0), 1.0)
                if clamped < self._progress:
                    return
                self._progress = clamped
                if on_progress is not None:
                    on_progress(clamped)

            def report(fraction: float) -> None:
                loop.call_soon_threadsafe(deliver, float(fraction))

            logger.info("Loading model with %s backend", self._backend.backend_type)
            try:
                handle = await asyncio.to_thread(self._backend.load, report)
            except Exception as e:
                logger.error("Model load failed: %s", e, exc_info=True)
                # A failed attempt is terminal too
                deliver(1.0)
                raise LoadError(str(e) or type(e).__name__) from e

            deliver(1.0)
            self._handle = handle
            logger.info("Model loaded")
            return handle

    def close(self) -> None:
        """Release the loaded model."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None
