"""Serialize step-loop events into the single client-facing stream."""

import asyncio
import contextlib
import logging
import re
from collections.abc import AsyncIterator

from chatloop.orchestrator.events import (
    ReasoningDelta,
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    is_terminal,
)

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Oops, an error occured!"
_WORD = re.compile(r"\S+\s+")
_DONE = object()


class WordSmoother:
    """Re-chunk text into whole words followed by their trailing whitespace.

    Text that has not yet reached a word boundary is held until ``flush``.
    Concatenating every chunk always reproduces the input exactly.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> bool:
        return bool(self._buffer)

    def feed(self, text: str) -> list[str]:
        self._buffer += text
        chunks: list[str] = []
        while True:
            match = _WORD.search(self._buffer)
            if match is None:
                break
            chunks.append(self._buffer[: match.end()])
            self._buffer = self._buffer[match.end() :]
        return chunks

    def flush(self) -> str:
        text, self._buffer = self._buffer, ""
        return text


class StreamMerger:
    """Consume a step-loop event source and yield the client stream.

    The source runs in its own task and feeds a bounded queue, so a slow
    client pushes back on generation instead of buffering without limit.
    Exactly one terminal event (``StreamEnd`` or ``StreamError``) is yielded
    and nothing follows it. When the wall-clock ceiling passes, the source
    is cancelled and the stream ends with the public error message.
    """

    def __init__(
        self,
        *,
        smoothing: str = "word",
        send_reasoning: bool = True,
        max_duration_seconds: float = 60.0,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        queue_size: int = 64,
    ) -> None:
        self.smoothing = smoothing
        self.send_reasoning = send_reasoning
        self.max_duration_seconds = max_duration_seconds
        self.error_message = error_message
        self.queue_size = max(1, queue_size)
        self.terminal: StreamEvent | None = None

    @property
    def completed(self) -> bool:
        """True once the stream closed with ``StreamEnd``."""
        return isinstance(self.terminal, StreamEnd)

    async def _produce(
        self, source: AsyncIterator[StreamEvent], queue: asyncio.Queue[object]
    ) -> None:
        step = 0
        try:
            async with contextlib.aclosing(source):
                async for event in source:
                    step = event.step
                    await queue.put(event)
                    if is_terminal(event):
                        return
        except Exception as exc:
            logger.exception("stream.source_failed step=%d", step)
            await queue.put(
                StreamError(step=step, message=self.error_message, detail=f"{type(exc).__name__}")
            )
            return
        await queue.put(_DONE)

    async def merge(self, source: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration_seconds
        queue: asyncio.Queue[object] = asyncio.Queue(maxsize=self.queue_size)
        producer = asyncio.create_task(self._produce(source, queue))
        smoother = WordSmoother() if self.smoothing == "word" else None
        text_step = 0
        last_step = 0

        def flush() -> TextDelta | None:
            if smoother is None or not smoother.pending:
                return None
            return TextDelta(step=text_step, text=smoother.flush())

        try:
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise TimeoutError
                    item = await asyncio.wait_for(queue.get(), timeout=remaining)
                except TimeoutError:
                    logger.warning(
                        "stream.timeout step=%d limit=%.1fs", last_step, self.max_duration_seconds
                    )
                    pending = flush()
                    if pending is not None:
                        yield pending
                    self.terminal = StreamError(step=last_step, message=self.error_message)
                    yield self.terminal
                    return

                if item is _DONE:
                    pending = flush()
                    if pending is not None:
                        yield pending
                    self.terminal = StreamEnd(step=last_step)
                    yield self.terminal
                    return

                event: StreamEvent = item  # type: ignore[assignment]
                last_step = event.step
                if isinstance(event, TextDelta) and smoother is not None:
                    if event.step != text_step:
                        pending = flush()
                        if pending is not None:
                            yield pending
                        text_step = event.step
                    for chunk in smoother.feed(event.text):
                        yield TextDelta(step=event.step, text=chunk)
                    continue

                pending = flush()
                if pending is not None:
                    yield pending
                if isinstance(event, ReasoningDelta) and not self.send_reasoning:
                    continue
                if isinstance(event, StreamError):
                    logger.error(
                        "stream.error step=%d detail=%s", event.step, event.detail or event.message
                    )
                    self.terminal = StreamError(step=event.step, message=self.error_message)
                    yield self.terminal
                    return
                if isinstance(event, StreamEnd):
                    self.terminal = event
                    yield event
                    return
                yield event
        finally:
            if not producer.done():
                producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer
