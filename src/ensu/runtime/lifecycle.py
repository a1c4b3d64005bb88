"""Lifecycle of the single on-device model.

This module hides the design decision of how an on-device model gets from
"requested" to "ready": the engine's load runs in its own task so that a
cancellation really aborts the in-flight transfer, progress text from the
engine is classified into phases, and a new load request always
supersedes an old one.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from ..config import AppConfig
from ..errors import ModelLoadError, ModelNotLoadedError
from .base import ModelHandle, ModelRuntime
from .models import LoadProgress, LoadResult, ModelLoadState
from .phases import advance, classify_phase

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[LoadProgress], None]


@dataclass
class _LoadAttempt:
    """Bookkeeping for one call to the engine's ``load``."""

    model_id: str
    size_mb: int | None
    listeners: list[ProgressCallback] = field(default_factory=list)
    task: asyncio.Task[ModelHandle] | None = None
    cancelled: bool = False
    started: asyncio.Event = field(default_factory=asyncio.Event)


def _outer_cancellation_pending() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


class ModelLifecycleManager:
    """Owns the load state and the handle of the on-device model.

    Only one load may be in flight and only one model may be loaded.
    The manager is an explicit collaborator: create one per engine and hand
    it to the on-device provider.

    Usage:
        manager = ModelLifecycleManager(runtime, config)
        result = await manager.ensure_loaded("SmolLM2-360M-Instruct-q4f16_1-MLC", print)
        if result is LoadResult.READY:
            handle = manager.handle
    """

    def __init__(self, runtime: ModelRuntime, config: AppConfig | None = None):
        self._runtime = runtime
        self._config = config or AppConfig()
        self._handle: ModelHandle | None = None
        self._model_id: str | None = None
        self._attempt: _LoadAttempt | None = None
        self._progress = LoadProgress()
        self._generation_lock = asyncio.Lock()

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def state(self) -> ModelLoadState:
        return self._progress.phase

    @property
    def progress(self) -> LoadProgress:
        return self._progress

    @property
    def current_model(self) -> str | None:
        """Id of the loaded model, or None."""
        return self._model_id if self._handle is not None else None

    @property
    def loading_model(self) -> str | None:
        """Id of the model whose load is in flight, or None."""
        attempt = self._attempt
        return attempt.model_id if attempt and not attempt.cancelled else None

    @property
    def is_loading(self) -> bool:
        return self.loading_model is not None

    @property
    def generation_lock(self) -> asyncio.Lock:
        """Held by whoever is generating with the loaded handle."""
        return self._generation_lock

    @property
    def handle(self) -> ModelHandle:
        if self._handle is None:
            raise ModelNotLoadedError("No model loaded")
        return self._handle

    def is_loaded(self, model_id: str | None = None) -> bool:
        if model_id is None:
            return self._handle is not None
        return self._handle is not None and self._model_id == model_id

    def _publish(
        self,
        attempt: _LoadAttempt | None,
        phase: ModelLoadState,
        progress: float,
        text: str,
    ) -> None:
        self._progress = LoadProgress(
            progress=min(max(progress, 0.0), 1.0),
            phase=phase,
            phase_text=text,
            model_id=attempt.model_id if attempt else self._model_id,
            size_mb=attempt.size_mb if attempt else None,
        )
        if attempt is None:
            return
        for listener in attempt.listeners:
            try:
                listener(self._progress)
            except Exception:
                logger.warning("Load progress listener failed", exc_info=True)

    def _reporter(self, attempt: _LoadAttempt) -> Callable[[float, str], None]:
        def report(fraction: float, text: str) -> None:
            # Late reports from a cancelled or superseded load are dropped
            if attempt.cancelled or self._attempt is not attempt:
                return
            phase = advance(self._progress.phase, classify_phase(text))
            self._publish(attempt, phase, fraction, text)

        return report

    async def ensure_loaded(
        self,
        model_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> LoadResult:
        """Make ``model_id`` the loaded model.

        No-op if it is already loaded. A load of the same model that is
        already in flight is joined; a load of a different model is
        cancelled first.

        Args:
            model_id: Model to load
            on_progress: Called with a LoadProgress at every transition

        Returns:
            LoadResult.READY, or LoadResult.CANCELLED if the load was
            cancelled or superseded before it completed

        Raises:
            ModelLoadError: The engine failed; ``phase`` names the phase
        """
        if self.is_loaded(model_id):
            return LoadResult.READY

        current = self._attempt
        if current is not None and not current.cancelled:
            if current.model_id == model_id:
                return await self._join(current, on_progress)
            logger.info("Load of %s superseded by %s", current.model_id, model_id)
        else:
            current = None

        info = self._config.get_model_info(model_id)
        attempt = _LoadAttempt(
            model_id=model_id,
            size_mb=info.vram_required_mb if info else None,
            listeners=[on_progress] if on_progress else [],
        )
        # Registered before the first await so a later request supersedes it
        self._attempt = attempt
        try:
            if current is not None:
                await self._abort(current)
            if self._handle is not None:
                await self._release()
        except BaseException:
            if not attempt.cancelled:
                attempt.cancelled = True
                self._finish_cancelled(attempt)
            raise

        if attempt.cancelled or self._attempt is not attempt:
            return LoadResult.CANCELLED

        self._publish(attempt, ModelLoadState.IDLE, 0.0, "")
        self._publish(attempt, ModelLoadState.INITIALIZING, 0.0, "Initializing...")

        logger.info("Loading on-device model %s", model_id)
        attempt.task = asyncio.create_task(
            self._runtime.load(model_id, self._reporter(attempt), info),
            name=f"load:{model_id}",
        )
        attempt.started.set()
        return await self._await_attempt(attempt)

    async def _join(self, attempt: _LoadAttempt, on_progress: ProgressCallback | None) -> LoadResult:
        if on_progress:
            attempt.listeners.append(on_progress)
        await attempt.started.wait()
        if attempt.task is None:
            return LoadResult.CANCELLED
        try:
            await asyncio.shield(attempt.task)
        except asyncio.CancelledError:
            if _outer_cancellation_pending():
                raise
        except Exception as e:
            raise ModelLoadError(str(e), attempt.model_id, ModelLoadState.ERROR.value) from e
        return LoadResult.READY if self.is_loaded(attempt.model_id) else LoadResult.CANCELLED

    async def _await_attempt(self, attempt: _LoadAttempt) -> LoadResult:
        try:
            handle = await attempt.task
        except asyncio.CancelledError:
            if attempt.cancelled and not _outer_cancellation_pending():
                return LoadResult.CANCELLED
            # Our own caller went away; the load goes with it
            attempt.cancelled = True
            self._finish_cancelled(attempt)
            raise
        except Exception as e:
            if attempt.cancelled:
                return LoadResult.CANCELLED
            failed_phase = self._progress.phase
            if self._attempt is attempt:
                self._attempt = None
            self._publish(attempt, ModelLoadState.ERROR, 0.0, str(e))
            logger.error("Loading %s failed during %s: %s", attempt.model_id, failed_phase.value, e)
            raise ModelLoadError(str(e), attempt.model_id, failed_phase.value) from e

        if attempt.cancelled:
            # Finished in the same instant it was cancelled
            await handle.unload()
            return LoadResult.CANCELLED

        self._handle = handle
        self._model_id = attempt.model_id
        self._attempt = None
        self._publish(attempt, ModelLoadState.READY, 1.0, "Ready")
        logger.info("On-device model %s ready", attempt.model_id)
        return LoadResult.READY

    def _finish_cancelled(self, attempt: _LoadAttempt) -> None:
        if self._attempt is attempt:
            self._attempt = None
        attempt.started.set()
        self._publish(attempt, ModelLoadState.CANCELLED, 0.0, "Cancelled")

    async def cancel(self) -> None:
        """Cancel the in-flight load, aborting its transfer.

        No-op when nothing is loading, including after a load completed.
        """
        attempt = self._attempt
        if attempt is None or attempt.cancelled:
            return
        await self._abort(attempt)

    async def _abort(self, attempt: _LoadAttempt) -> None:
        attempt.cancelled = True
        logger.info("Cancelling load of %s", attempt.model_id)
        self._finish_cancelled(attempt)

        task = attempt.task
        if task is None:
            # Still waiting for the previous model to unload; it never starts
            return
        if task.done():
            # The awaiting caller unloads the finished handle when it resumes
            return

        task.cancel()
        try:
            handle = await task
        except asyncio.CancelledError:
            if _outer_cancellation_pending():
                raise
            return
        except Exception as e:
            logger.debug("Cancelled load of %s ended with %s", attempt.model_id, e)
            return

        # The engine ignored the cancellation and produced a model anyway
        await handle.unload()

    def interrupt_generation(self) -> None:
        """Stop the active generation without unloading the model."""
        if self._handle is not None:
            self._handle.interrupt()

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            logger.info("Unloading on-device model %s", self._model_id)
            await handle.unload()
        self._model_id = None

    async def unload(self) -> None:
        """Release the loaded model (and any in-flight load); state returns to idle."""
        await self.cancel()
        await self._release()
        self._publish(None, ModelLoadState.IDLE, 0.0, "")
