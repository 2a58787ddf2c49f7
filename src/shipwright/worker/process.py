"""Shell stage runner: spawn one command and stream its output lines."""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Literal

import structlog

logger = structlog.get_logger(__name__)

_READ_CHUNK = 64 * 1024
# Longer output without a newline is split into several lines.
MAX_LINE_BYTES = 64 * 1024
_KILL_GRACE_SECONDS = 5.0


@dataclass(slots=True)
class OutputLine:
    """Single line written by a stage command."""

    text: str
    stream: Literal["stdout", "stderr"] = "stdout"


async def _pump(
    pipe: asyncio.StreamReader,
    stream: Literal["stdout", "stderr"],
    queue: asyncio.Queue[OutputLine | None],
) -> None:
    buffer = bytearray()

    def put(raw_line: bytes) -> None:
        text = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
        if text:
            queue.put_nowait(OutputLine(text=text, stream=stream))

    try:
        while True:
            chunk = await pipe.read(_READ_CHUNK)
            if not chunk:
                break
            buffer.extend(chunk)
            while True:
                newline_index = buffer.find(b"\n")
                if newline_index < 0:
                    break
                put(bytes(buffer[:newline_index]))
                del buffer[: newline_index + 1]
            # Progress bars redraw with "\r" and never end a line.
            while len(buffer) >= MAX_LINE_BYTES:
                put(bytes(buffer[:MAX_LINE_BYTES]))
                del buffer[:MAX_LINE_BYTES]
        if buffer:
            put(bytes(buffer))
    finally:
        queue.put_nowait(None)


class StageProcess:
    """Run *command* through the shell in *cwd* with a deadline.

    Iterate :meth:`lines` to consume stdout and stderr interleaved in arrival
    order; once iteration ends :attr:`returncode`, :attr:`timed_out` and
    :attr:`cancelled` describe how the command finished. The command runs in
    its own process group so that terminating it also stops whatever it
    spawned (``npm`` children, compilers, watchers).
    """

    def __init__(
        self,
        command: str,
        *,
        cwd: Path,
        timeout: float,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command = command
        self._cwd = cwd
        self._timeout = timeout
        self._env = env
        self._process: asyncio.subprocess.Process | None = None
        self.returncode: int | None = None
        self.timed_out = False
        self.cancelled = False

    async def lines(self) -> AsyncIterator[OutputLine]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        process = await asyncio.create_subprocess_shell(
            self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self._cwd),
            env=self._env,
            start_new_session=True,
        )
        self._process = process
        assert process.stdout is not None and process.stderr is not None
        if self.cancelled:
            # terminate() arrived while the command was being spawned.
            await self._kill()

        queue: asyncio.Queue[OutputLine | None] = asyncio.Queue()
        readers = [
            asyncio.create_task(_pump(process.stdout, "stdout", queue)),
            asyncio.create_task(_pump(process.stderr, "stderr", queue)),
        ]
        try:
            open_streams = len(readers)
            while open_streams:
                item = await self._next(queue, deadline)
                if item is None:
                    open_streams -= 1
                    continue
                yield item
            await self._wait(deadline)
            self.returncode = process.returncode
        finally:
            for reader in readers:
                reader.cancel()
            if process.returncode is None:
                await self._kill()

    async def _next(
        self, queue: asyncio.Queue[OutputLine | None], deadline: float
    ) -> OutputLine | None:
        if not self.timed_out:
            remaining = deadline - asyncio.get_running_loop().time()
            try:
                return await asyncio.wait_for(queue.get(), timeout=max(remaining, 0.0))
            except TimeoutError:
                self._expire()
                await self._kill()
        # Already killed: the pipes close shortly, drain what is left.
        return await queue.get()

    async def _wait(self, deadline: float) -> None:
        process = self._process
        assert process is not None
        if process.returncode is not None:
            return
        remaining = deadline - asyncio.get_running_loop().time()
        try:
            await asyncio.wait_for(process.wait(), timeout=max(remaining, 0.0))
        except TimeoutError:
            self._expire()
            await self._kill()

    def _expire(self) -> None:
        if not self.cancelled:
            self.timed_out = True
        logger.warning("stage_deadline_exceeded", command=self.command, timeout=self._timeout)

    async def terminate(self) -> bool:
        """Stop the command. Returns ``False`` if it already exited.

        Called before :meth:`lines` has spawned the command, the command is
        killed as soon as it starts.
        """
        process = self._process
        if process is None:
            self.cancelled = True
            return True
        if process.returncode is not None:
            return False
        self.cancelled = True
        await self._kill()
        return True

    async def _kill(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=_KILL_GRACE_SECONDS)
        except TimeoutError:
            self._signal(signal.SIGKILL)
            await process.wait()

    def _signal(self, signum: int) -> None:
        process = self._process
        assert process is not None
        try:
            os.killpg(process.pid, signum)
        except ProcessLookupError:
            pass
