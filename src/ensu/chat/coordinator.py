"""Driving one chat turn from user message to finalized history.

This module hides the design decision of how a provider's stream is tied
to a session: the user message is recorded before any network activity,
deltas are forwarded in decode order until the stream ends or the turn is
cancelled, and the outcome decides between commit, placeholder and
rollback. Each turn runs in its own task and publishes its events to a
private queue, so two generations can never share a caller stream.
"""

import asyncio
import logging
from collections.abc import Callable

from ..errors import EnsuError, ModelLoadError
from ..llm.base import LLMProvider
from ..llm.models import StreamChunk, StreamingResponse
from ..runtime.models import LoadProgress, LoadResult
from ..session.store import SessionStore
from ..streaming.cancellation import CancellationToken
from .models import FinishReason, StreamEvent, TurnOutcome

logger = logging.getLogger(__name__)

_END = object()


class StreamRun:
    """Handle to one running turn.

    Iterate it for StreamEvent items, call ``cancel()`` to stop it and
    ``await run.wait()`` for the TurnOutcome. Iteration ends once the
    turn has been finalized.

    Usage:
        run = await coordinator.run(provider, store, "hi")
        async for event in run:
            if isinstance(event, StreamChunk) and event.delta:
                print(event.delta, end="")
        outcome = await run.wait()
    """

    def __init__(self, session_id: str, token: CancellationToken | None = None):
        self.session_id = session_id
        self._token = token or CancellationToken()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[TurnOutcome] | None = None
        self._exhausted = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def outcome(self) -> TurnOutcome | None:
        """The TurnOutcome once the turn is finalized, else None."""
        if self._task is None or not self._task.done() or self._task.cancelled():
            return None
        return self._task.result()

    def cancel(self) -> bool:
        """Stop the turn. Only the first call has an effect.

        Returns:
            True if this call requested the cancellation
        """
        if self.done:
            return False
        return self._token.cancel()

    async def wait(self) -> TurnOutcome:
        """Wait for the turn to be finalized."""
        if self._task is None:
            raise RuntimeError("Run has not been started")
        return await asyncio.shield(self._task)

    def _start(self, coro) -> None:
        self._task = asyncio.create_task(coro, name=f"turn:{self.session_id}")

    def _emit(self, event: StreamEvent) -> bool:
        """Queue ``event`` for the caller unless the turn was cancelled."""
        if self._token.cancelled:
            return False
        self._queue.put_nowait(event)
        return True

    def _close(self) -> None:
        self._queue.put_nowait(_END)

    def __aiter__(self) -> "StreamRun":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._exhausted:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        return item


class StreamCoordinator:
    """Runs chat turns with at most one active turn per session.

    A new ``run()`` on a session that already has one in flight cancels
    the old turn and waits for it to be finalized before starting.

    Args:
        system_prompt: Prepended to the history sent to the provider
        history_limit: Send only the most recent N messages
    """

    def __init__(
        self,
        system_prompt: str | None = None,
        history_limit: int | None = None,
    ):
        self._system_prompt = system_prompt
        self._history_limit = history_limit
        self._active: dict[str, StreamRun] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def active_run(self, session_id: str) -> StreamRun | None:
        run = self._active.get(session_id)
        return run if run is not None and not run.done else None

    async def run(
        self,
        provider: LLMProvider,
        store: SessionStore,
        content: str,
        images: list[bytes] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> StreamRun:
        """Start a turn: record ``content`` as the user message and stream the reply.

        Args:
            provider: Backend to generate with
            store: Session the turn belongs to
            content: User message text
            images: Raw image payloads attached to the user message
            cancel_token: Token to cancel the turn with (a fresh one by default)

        Returns:
            The StreamRun handle; the turn is already running
        """
        session_id = store.id
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            previous = self.active_run(session_id)
            if previous is not None:
                logger.info("Cancelling active turn on session %s for a new one", session_id)
                previous.cancel()
                await previous.wait()

            run = StreamRun(session_id, cancel_token)
            store.begin_turn(content, images)
            self._active[session_id] = run
            run._start(self._drive(provider, store, run))
            return run

    async def cancel(self, session_id: str) -> bool:
        """Cancel the session's active turn and wait for it to be finalized."""
        run = self.active_run(session_id)
        if run is None:
            return False
        requested = run.cancel()
        await run.wait()
        return requested

    async def _drive(self, provider: LLMProvider, store: SessionStore, run: StreamRun) -> TurnOutcome:
        turn = _Turn(store, run)
        try:
            outcome = await self._play(provider, store, run, turn)
        except asyncio.CancelledError:
            run.token.cancel()
            turn.finalize(FinishReason.CANCELLED)
            raise
        except Exception as e:
            logger.error("Turn on session %s failed", store.id, exc_info=True)
            outcome = turn.finalize(FinishReason.ERROR, error=str(e) or type(e).__name__, rollback=True)
        finally:
            if self._active.get(store.id) is run:
                del self._active[store.id]
            run._close()
        return outcome

    async def _play(
        self,
        provider: LLMProvider,
        store: SessionStore,
        run: StreamRun,
        turn: "_Turn",
    ) -> TurnOutcome:
        token = run.token
        model = store.session.model or ""

        if token.cancelled:
            return turn.finalize(FinishReason.CANCELLED)

        if provider.is_local:
            result = await self._wait_for_model(provider, model, run, turn)
            if isinstance(result, TurnOutcome):
                return result
            if result is LoadResult.CANCELLED or token.cancelled:
                return turn.finalize(FinishReason.LOAD_CANCELLED)

        messages = store.get_messages_for_provider(self._history_limit, self._system_prompt)
        try:
            stream = await provider.chat_stream(
                model,
                messages,
                store.session.options,
                cancel_token=token,
            )
        except EnsuError as e:
            if token.cancelled:
                return turn.finalize(FinishReason.CANCELLED)
            logger.warning("Could not start %s stream: %s", provider.name, e)
            # Nothing was streamed: the session goes back to where it started
            return turn.finalize(FinishReason.ERROR, error=str(e), rollback=True)

        return await self._consume(stream, turn, token)

    async def _wait_for_model(
        self,
        provider: LLMProvider,
        model: str,
        run: StreamRun,
        turn: "_Turn",
    ) -> LoadResult | TurnOutcome:
        lifecycle = provider.lifecycle
        token = run.token

        def on_progress(progress: LoadProgress) -> None:
            run._emit(progress)

        load = asyncio.ensure_future(lifecycle.ensure_loaded(model, on_progress))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({load, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if not load.done():
            logger.debug("Turn cancelled while %s was loading", model)
            # The cancelled attempt resolves once its transfer or the previous unload stops
            await lifecycle.cancel()

        try:
            return await load
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling() > 0:
                raise
            return LoadResult.CANCELLED
        except ModelLoadError as e:
            logger.warning("Model %s failed to load during %s", e.model_id, e.phase)
            return turn.finalize(FinishReason.LOAD_FAILED, error=str(e))

    async def _consume(
        self,
        stream: StreamingResponse,
        turn: "_Turn",
        token: CancellationToken,
    ) -> TurnOutcome:
        reason = FinishReason.COMPLETED
        error: str | None = None
        try:
            async for chunk in stream:
                if token.cancelled:
                    break
                if chunk.done:
                    if chunk.error:
                        reason, error = FinishReason.ERROR, chunk.error
                    turn.forward(chunk)
                    break
                turn.forward(chunk)
        except Exception as e:
            if not token.cancelled:
                logger.error("Stream consumption failed", exc_info=True)
                reason, error = FinishReason.ERROR, str(e)
        finally:
            await stream.aclose()

        if token.cancelled:
            reason, error = FinishReason.CANCELLED, None
        return turn.finalize(reason, error=error, usage=stream.usage)


class _Turn:
    """Accumulated text and the single finalization of one turn."""

    def __init__(self, store: SessionStore, run: StreamRun):
        self.store = store
        self.run = run
        self.parts: list[str] = []
        self.thinking: list[str] = []
        self.outcome: TurnOutcome | None = None

    def forward(self, chunk: StreamChunk) -> None:
        if not self.run._emit(chunk):
            return
        if chunk.delta:
            self.parts.append(chunk.delta)
        elif chunk.thinking:
            self.thinking.append(chunk.thinking)

    def finalize(
        self,
        reason: FinishReason,
        error: str | None = None,
        usage: dict[str, int] | None = None,
        rollback: bool = False,
    ) -> TurnOutcome:
        """Apply the commit/placeholder/rollback rule exactly once."""
        if self.outcome is not None:
            return self.outcome

        store = self.store
        text = "".join(self.parts)
        message = None
        rolled_back = False
        if text:
            # Partial output is kept, cancelled or not
            message = store.commit_turn(text, usage)
        elif rollback or reason in (FinishReason.CANCELLED, FinishReason.LOAD_CANCELLED, FinishReason.LOAD_FAILED):
            store.rollback_turn()
            rolled_back = True
        else:
            message = store.record_no_response(usage)

        log: Callable[..., None] = logger.info if reason.is_cancellation else logger.debug
        log("Turn on session %s finished: %s (%d chars)", store.id, reason.value, len(text))

        self.outcome = TurnOutcome(
            reason=reason,
            content=text,
            thinking="".join(self.thinking),
            message=message,
            rolled_back=rolled_back,
            error=error,
            usage=usage if message is not None else None,
            context_warning=store.pop_context_warning() if message is not None else None,
        )
        return self.outcome
