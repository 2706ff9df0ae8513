"""
Stderr draining for child processes.

Both tools write diagnostics to stderr. If nobody reads it the pipe fills
and the tool blocks, so every spawned process gets a drain task that keeps
the last few lines for error reports.
"""

import asyncio
from collections import deque
from typing import Optional

DEFAULT_TAIL_LINES = 20


class StderrTail:
    """Continuously reads a stream, keeping only the last max_lines lines."""

    def __init__(self, stream: Optional[asyncio.StreamReader], max_lines: int = DEFAULT_TAIL_LINES):
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._task: Optional[asyncio.Task] = None
        if stream is not None:
            self._task = asyncio.get_running_loop().create_task(self._drain(stream))

    async def _drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # Line longer than the reader limit; the reader already dropped it
                continue
            except OSError:
                return
            if not line:
                return
            text = line.decode("utf-8", "replace").strip()
            if text:
                self._lines.append(text)

    def text(self) -> str:
        return "\n".join(self._lines)

    async def wait(self, timeout: float = 1.0) -> str:
        """Wait briefly for the drain to hit EOF, then return the tail."""
        if self._task is not None and not self._task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout)
            except asyncio.TimeoutError:
                pass
        return self.text()
