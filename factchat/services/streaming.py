"""UI message stream framing and the per-turn streaming lifecycle."""

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from factchat.services.llm_client import StreamDelta

logger = logging.getLogger(__name__)

STREAM_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

DONE_FRAME = "data: [DONE]\n\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}

# Producers pause in merge() once this many frames wait for the client
MAX_BUFFERED_FRAMES = 256

# Turn tasks outlive the response when the client disconnects
_running_turns: Set[asyncio.Task] = set()


def encode_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class CancellationToken:
    """Set once by the consumer side to stop a turn."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class TurnLifecycle:
    """Hooks observed while a turn streams.

    ``on_finish`` is called exactly once per turn, including when the client
    aborted or generation failed after the stream opened.
    """

    def on_token(self, delta: str) -> None:
        pass

    def on_error(self, error: BaseException) -> str:
        """Handle a generation failure and return the text shown to the client."""
        logger.error("Turn generation failed", exc_info=error)
        return STREAM_ERROR_MESSAGE

    async def on_finish(self, message: Dict[str, Any], aborted: bool, error: bool = False) -> None:
        pass


class UIMessageStreamWriter:
    """Writes UI message stream frames and assembles the resulting assistant message."""

    def __init__(
        self,
        message_id: str,
        emit: Callable[[str], None],
        on_token: Optional[Callable[[str], None]] = None,
        drain: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.message_id = message_id
        self.parts: List[Dict[str, Any]] = []
        self._emit = emit
        self._on_token = on_token
        self._drain = drain
        self._open_kind: Optional[str] = None
        self._open_id: Optional[str] = None
        self._block_count = 0

    def _write(self, payload: Dict[str, Any]) -> None:
        self._emit(encode_frame(payload))

    def end_block(self) -> None:
        """Close the open text or reasoning block, if any."""
        self._close_block()

    def _close_block(self) -> None:
        if self._open_kind is not None:
            self._write({"type": f"{self._open_kind}-end", "id": self._open_id})
            self._open_kind = None
            self._open_id = None

    def _write_delta(self, kind: str, delta: str) -> None:
        if not delta:
            return
        if self._open_kind != kind:
            self._close_block()
            self._block_count += 1
            self._open_kind = kind
            self._open_id = f"{kind}-{self._block_count}"
            self.parts.append({"type": kind, "text": ""})
            self._write({"type": f"{kind}-start", "id": self._open_id})
        self.parts[-1]["text"] += delta
        self._write({"type": f"{kind}-delta", "id": self._open_id, "delta": delta})

    def start(self) -> None:
        self._write({"type": "start", "messageId": self.message_id})

    def write_source(self, part: Dict[str, Any]) -> None:
        """Inject a citation part ahead of generated tokens."""
        self._close_block()
        self.parts.append(part)
        self._write(part)

    def write_text(self, delta: str) -> None:
        self._write_delta("text", delta)
        if delta and self._on_token is not None:
            self._on_token(delta)

    def write_reasoning(self, delta: str) -> None:
        self._write_delta("reasoning", delta)

    async def merge(self, deltas: AsyncIterator[StreamDelta]) -> None:
        """Forward a model stream in generation order."""
        async for delta in deltas:
            if delta.kind == "reasoning":
                self.write_reasoning(delta.text)
            else:
                self.write_text(delta.text)
            if self._drain is not None:
                await self._drain()

    def write_error(self, error_text: str) -> None:
        self._close_block()
        self._write({"type": "error", "errorText": error_text})

    def finish(self) -> None:
        self._close_block()
        self._write({"type": "finish"})

    def build_message(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "role": "assistant",
            "parts": [dict(part) for part in self.parts],
        }


class TurnStream:
    """
    Runs one turn's producer as a task and exposes its frames.

    The producer writes to a UIMessageStreamWriter. Frames are queued for the
    response body; when the client disconnects the consumer cancels the token,
    the producer is cancelled at its next suspension point, and the partial
    message is still handed to ``on_finish`` with ``aborted=True``.
    Model streams pause in ``merge`` while MAX_BUFFERED_FRAMES frames are
    waiting for a slow client.
    """

    def __init__(
        self,
        producer: Callable[[UIMessageStreamWriter], Awaitable[None]],
        lifecycle: TurnLifecycle,
        message_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.producer = producer
        self.lifecycle = lifecycle
        self.timeout = timeout
        self.token = CancellationToken()
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._space = asyncio.Event()
        self.writer = UIMessageStreamWriter(
            message_id or uuid.uuid4().hex,
            emit=self._queue.put_nowait,
            on_token=lifecycle.on_token,
            drain=self._wait_for_space,
        )
        self._task: Optional[asyncio.Task] = None
        self._finished = False
        self._closed = False

    def start(self) -> "TurnStream":
        self._task = asyncio.create_task(self._run())
        _running_turns.add(self._task)
        self._task.add_done_callback(_running_turns.discard)
        return self

    async def _wait_for_space(self) -> None:
        while self._queue.qsize() >= MAX_BUFFERED_FRAMES:
            self._space.clear()
            await self._space.wait()

    async def _produce(self) -> None:
        if self.timeout:
            await asyncio.wait_for(self.producer(self.writer), self.timeout)
        else:
            await self.producer(self.writer)

    async def _run(self) -> None:
        aborted = False
        error = False
        try:
            self.writer.start()
            producer_task = asyncio.ensure_future(self._produce())
            abort_task = asyncio.ensure_future(self.token.wait())
            try:
                await asyncio.wait({producer_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                abort_task.cancel()

            if producer_task.done():
                if producer_task.cancelled():
                    exc = asyncio.CancelledError()
                else:
                    exc = producer_task.exception()
                if exc is not None:
                    error = True
                    self.writer.write_error(self.lifecycle.on_error(exc))
                self.writer.finish()
            else:
                aborted = True
                logger.info(f"Turn {self.writer.message_id} aborted by client")
                producer_task.cancel()
                with suppress(asyncio.CancelledError):
                    try:
                        await producer_task
                    except Exception as e:
                        logger.warning(f"Producer raised while cancelling: {e}")

            await self._finish(aborted=aborted, error=error)
        finally:
            self._closed = True
            self._queue.put_nowait(None)

    async def _finish(self, aborted: bool, error: bool) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            await self.lifecycle.on_finish(self.writer.build_message(), aborted=aborted, error=error)
        except Exception as e:
            # The client already has its content; do not surface this as a failed turn
            logger.error(f"Persisting turn {self.writer.message_id} failed: {e}", exc_info=True)

    async def frames(self) -> AsyncIterator[str]:
        """Response body: encoded frames followed by the terminator."""
        try:
            while True:
                frame = await self._queue.get()
                self._space.set()
                if frame is None:
                    yield DONE_FRAME
                    break
                yield frame
        finally:
            if not self._closed:
                self.token.cancel()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)
