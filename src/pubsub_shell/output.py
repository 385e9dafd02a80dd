"""
Serialized console output.

The console loop and the subscription streams both print. All of their lines
go through one queue drained by a single writer task, so no two writers ever
touch the terminal at once. When a line arrives while the prompt is showing,
the writer clears the prompt line, prints the message and draws the prompt
again.
"""

import asyncio
import logging
import sys
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

CLEAR_LINE = "\r\x1b[K"


class ConsoleOutput:
    """Single-writer output channel with prompt re-rendering"""

    def __init__(self, stream: Optional[TextIO] = None, prompt: str = "> "):
        """
        Initialize the output channel.

        Args:
            stream: Text stream to write to (default: sys.stdout)
            prompt: Prompt shown while waiting for a command
        """
        self.stream = stream if stream is not None else sys.stdout
        self.prompt_text = prompt
        self.prompt_visible = False

        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._writer_task: Optional[asyncio.Task] = None

    @property
    def interactive(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def start(self) -> None:
        """Start the writer task on the running loop."""
        if self._writer_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Write everything still queued, then stop the writer."""
        if self._writer_task is None:
            return
        await self.flush()
        self._writer_task.cancel()
        try:
            await self._writer_task
        except asyncio.CancelledError:
            pass
        self._writer_task = None

    def write(self, text: str) -> None:
        """Queue a line of command output."""
        self._put(("line", text))

    def message(self, text: str) -> None:
        """Queue a line that may interrupt the prompt."""
        self._put(("message", text))

    def message_threadsafe(self, text: str) -> None:
        """Queue a message from a thread other than the loop's."""
        if self._loop is None:
            raise RuntimeError("output channel not started")
        self._loop.call_soon_threadsafe(self.message, text)

    def prompt(self) -> None:
        """Show the prompt once everything queued so far is written."""
        self._put(("prompt", ""))

    def hide_prompt(self) -> None:
        self._put(("hide", ""))

    async def flush(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    def _put(self, item) -> None:
        if self._queue is None:
            # Not started yet; write straight through
            self._render(*item)
            return
        self._queue.put_nowait(item)

    async def _run(self) -> None:
        while True:
            kind, text = await self._queue.get()
            try:
                self._render(kind, text)
            except (OSError, ValueError) as e:
                logger.error(f"Console write failed: {e}")
            finally:
                self._queue.task_done()

    def _render(self, kind: str, text: str) -> None:
        if kind == "prompt":
            self.stream.write(self.prompt_text)
            self.prompt_visible = True
        elif kind == "hide":
            self.prompt_visible = False
        elif kind == "message" and self.prompt_visible:
            prefix = CLEAR_LINE if self.interactive else "\n"
            self.stream.write(f"{prefix}{text}\n{self.prompt_text}")
        else:
            self.stream.write(f"{text}\n")
        self.stream.flush()
