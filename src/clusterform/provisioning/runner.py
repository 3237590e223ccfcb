"""Converger process runner.

Runs the external converger binary (``terraform`` by default) inside the
workspace directory. Output is streamed to caller-supplied sinks; this layer
never parses it. Cancelling the calling task kills the child process and
reaps it before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
import codecs
import io
from pathlib import Path
from typing import IO, Any, Protocol

from ..errors import ConvergerError, ConvergerNotFoundError, ConvergerTimeoutError
from ..observability.logging import get_logger

logger = get_logger(__name__)

_CHUNK_SIZE = 64 * 1024

Sink = IO[str] | IO[bytes]


# ── Protocol ─────────────────────────────────────────────────────────


class ProcessRunner(Protocol):
    """Run the converger with arguments inside a working directory."""

    async def run(
        self,
        work_dir: Path,
        *args: str,
        stdout: Sink | None = None,
        stderr: Sink | None = None,
    ) -> None:
        """Run to completion.

        Raises:
            ConvergerError: The process could not start or exited non-zero.
            asyncio.CancelledError: The calling task was cancelled.
        """
        ...


# ── Subprocess implementation ────────────────────────────────────────


class SubprocessRunner:
    """ProcessRunner backed by ``asyncio.create_subprocess_exec``.

    Args:
        binary: Converger executable name or path.
        timeout: Optional wall-clock limit in seconds per invocation.
    """

    def __init__(self, binary: str = 'terraform', *, timeout: float | None = None) -> None:
        self._binary = binary
        self._timeout = timeout

    @property
    def binary(self) -> str:
        return self._binary

    async def run(
        self,
        work_dir: Path,
        *args: str,
        stdout: Sink | None = None,
        stderr: Sink | None = None,
    ) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                cwd=str(work_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=None if stdout is None else asyncio.subprocess.PIPE,
                stderr=None if stderr is None else asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ConvergerNotFoundError(
                args,
                None,
                f'converger binary {self._binary!r} not found',
            ) from exc

        logger.debug(
            'converger_started',
            binary=self._binary,
            args=list(args),
            pid=proc.pid,
            work_dir=work_dir,
        )

        try:
            await asyncio.wait_for(
                _communicate(proc, stdout, stderr),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            await _kill(proc)
            raise ConvergerTimeoutError(
                args,
                proc.returncode,
                f'converger {" ".join(args)!r} timed out after {self._timeout}s',
            ) from None
        except asyncio.CancelledError:
            await _kill(proc)
            logger.warning('converger_cancelled', args=list(args), pid=proc.pid)
            raise

        if proc.returncode != 0:
            raise ConvergerError(args, proc.returncode)


async def _communicate(
    proc: asyncio.subprocess.Process,
    stdout: Sink | None,
    stderr: Sink | None,
) -> None:
    pumps = []
    if stdout is not None and proc.stdout is not None:
        pumps.append(_pump(proc.stdout, stdout))
    if stderr is not None and proc.stderr is not None:
        pumps.append(_pump(proc.stderr, stderr))
    await asyncio.gather(*pumps)
    await proc.wait()


async def _pump(reader: asyncio.StreamReader, sink: Any) -> None:
    """Copy a pipe into a sink, decoding for text sinks."""
    decoder = (
        codecs.getincrementaldecoder('utf-8')(errors='replace')
        if isinstance(sink, io.TextIOBase)
        else None
    )
    while True:
        chunk = await reader.read(_CHUNK_SIZE)
        if not chunk:
            break
        sink.write(decoder.decode(chunk) if decoder else chunk)
    if decoder:
        tail = decoder.decode(b'', final=True)
        if tail:
            sink.write(tail)
    flush = getattr(sink, 'flush', None)
    if flush is not None:
        flush()


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


# ── In-memory implementation (testing) ───────────────────────────────


class InMemoryProcessRunner:
    """Test runner that records calls instead of spawning processes.

    Args:
        fail_on: Subcommands (first argument) that raise ConvergerError.
        block_on: Subcommands that wait until ``unblock()`` or cancellation.
        returncode: Exit status reported for scripted failures.
        output: Text written to the stdout sink on every call.
    """

    def __init__(
        self,
        *,
        fail_on: tuple[str, ...] = (),
        block_on: tuple[str, ...] = (),
        returncode: int = 1,
        output: str = '',
    ) -> None:
        self.fail_on = set(fail_on)
        self.block_on = set(block_on)
        self.returncode = returncode
        self.output = output
        self.calls: list[tuple[Path, tuple[str, ...]]] = []
        self.killed: list[tuple[str, ...]] = []
        self.running = 0
        self.started = asyncio.Event()
        self._release = asyncio.Event()

    @property
    def subcommands(self) -> list[tuple[str, ...]]:
        return [args for _, args in self.calls]

    def unblock(self) -> None:
        self._release.set()

    async def run(
        self,
        work_dir: Path,
        *args: str,
        stdout: Sink | None = None,
        stderr: Sink | None = None,
    ) -> None:
        self.calls.append((Path(work_dir), tuple(args)))
        subcommand = args[0] if args else ''
        if stdout is not None and self.output:
            stdout.write(self.output)

        self.running += 1
        try:
            if subcommand in self.block_on:
                self.started.set()
                try:
                    await self._release.wait()
                except asyncio.CancelledError:
                    self.killed.append(tuple(args))
                    raise
        finally:
            self.running -= 1

        if subcommand in self.fail_on:
            raise ConvergerError(args, self.returncode)
