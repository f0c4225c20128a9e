"""
Stream Reducer - Turns raw generate-stream lines into rate-limited text updates.
"""

import logging
import time
from typing import AsyncIterable, Callable, Optional

from ..llm.base import GenerateChunk

logger = logging.getLogger(__name__)


class StreamReducer:
    """
    Accumulates every `response` fragment of a stream.

    `on_update` receives the full accumulated text, at most once per
    `min_interval` seconds while the stream runs, and once more when it ends
    so the last fragments are never lost. Malformed lines are skipped.
    """

    def __init__(
        self,
        on_update: Optional[Callable[[str], None]] = None,
        min_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_update = on_update
        self.min_interval = min_interval
        self.clock = clock
        self._text = ""
        self._last_emit: Optional[float] = None
        self.skipped_lines = 0
        self.emit_count = 0

    @property
    def text(self) -> str:
        return self._text

    def feed(self, line: str) -> None:
        """Accumulate one raw line, emitting if the interval has elapsed."""
        chunk = GenerateChunk.from_line(line)
        if chunk is None:
            if line.strip():
                self.skipped_lines += 1
                logger.debug(f"Skipping malformed stream line: {line[:100]!r}")
            return
        if chunk.response:
            self._text += chunk.response

        now = self.clock()
        if self._last_emit is None or now - self._last_emit >= self.min_interval:
            self._emit(now)

    def flush(self) -> str:
        """Emit the full accumulator once and return it."""
        self._emit(self.clock())
        return self.text

    def _emit(self, now: float) -> None:
        self._last_emit = now
        self.emit_count += 1
        if self.on_update is not None:
            self.on_update(self.text)

    async def consume(self, lines: AsyncIterable[str]) -> str:
        """
        Drain `lines`, then flush.

        The flush also runs when the iteration raises, so partial text is
        visible before the error reaches the caller.
        """
        try:
            async for line in lines:
                self.feed(line)
        finally:
            self.flush()
        if self.skipped_lines:
            logger.info(f"Stream finished with {self.skipped_lines} malformed lines skipped")
        return self.text
