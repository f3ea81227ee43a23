"""Readiness handle for the descriptor model.

Loading the recognition model is slow and happens once per process. The
handle lets any number of callers await readiness while only one load runs.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

from attendance_core.exceptions import ModelNotReady
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class MatcherLifecycle(Generic[T]):
    """Idempotent initialize/is_ready/dispose around a blocking model loader.

    Attributes:
        name: Label used in log messages

    Example:
        >>> lifecycle = MatcherLifecycle(DlibDescriptorExtractor)
        >>> extractor = await lifecycle.initialize()
        >>> lifecycle.is_ready()
        True
    """

    def __init__(self, loader: Callable[[], T], name: str = "descriptor model"):
        """Initialize the handle.

        Args:
            loader: Blocking callable that loads and returns the model. It
                    runs in a worker thread.
            name: Label used in log messages
        """
        self._loader = loader
        self.name = name
        self._model: Optional[T] = None
        self._loading: Optional[asyncio.Task[T]] = None

    async def initialize(self) -> T:
        """Load the model, or wait for the load already in flight.

        Returns:
            The loaded model. Calling again after success returns it
            immediately.

        Raises:
            Exception: Whatever the loader raised. The handle stays
                unready and the next call starts a fresh load.
        """
        if self._model is not None:
            return self._model

        if self._loading is None:
            logger.info(f"Loading {self.name}...")
            self._loading = asyncio.ensure_future(asyncio.to_thread(self._loader))

        loading = self._loading
        try:
            model = await asyncio.shield(loading)
        except Exception as exc:
            if self._loading is loading:
                self._loading = None
            logger.error(f"Failed to load {self.name}: {exc}")
            raise

        if self._loading is loading:
            self._model = model
            self._loading = None
            logger.info(f"{self.name.capitalize()} ready")
        return model

    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> T:
        """The loaded model.

        Raises:
            ModelNotReady: If initialize() has not completed.
        """
        if self._model is None:
            raise ModelNotReady(f"{self.name} is not loaded; call initialize() first")
        return self._model

    def dispose(self) -> None:
        """Drop the loaded model. A later initialize() loads it again."""
        if self._loading is not None and not self._loading.done():
            self._loading.cancel()
        self._loading = None
        if self._model is not None:
            logger.info(f"Disposed {self.name}")
        self._model = None

    def __repr__(self) -> str:
        state = "ready" if self.is_ready() else ("loading" if self._loading else "idle")
        return f"MatcherLifecycle(name='{self.name}', state={state})"
