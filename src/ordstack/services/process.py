"""Child process wrapper, port probing and port reclaim."""

import asyncio
import contextlib
import logging
import socket
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..error_handling import DependencyError, ExternalToolError

logger = logging.getLogger(__name__)

# Only the start of stderr matters for startup diagnostics
STDERR_BUFFER_LIMIT = 8 * 1024
READER_DRAIN_TIMEOUT = 1.0


async def _exec(args: Sequence[str]) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise DependencyError(
            Path(args[0]).name,
            solution=f"Install {Path(args[0]).name} or point the configuration at its binary",
            original_error=e,
        ) from e


class ServiceProcess:
    """A long-running child whose output is forwarded to the log.

    ``exit_code`` stays None while the child is alive and is written only
    by the exit watcher task.
    """

    def __init__(
        self,
        name: str,
        process: asyncio.subprocess.Process,
        on_stderr: Callable[[str], None] | None = None,
    ):
        self.name = name
        self.process = process
        self.on_stderr = on_stderr
        self.exit_code: int | None = None
        self._stderr_chunks: list[str] = []
        self._stderr_size = 0
        self._exited = asyncio.Event()
        self._output_logger = logging.getLogger(f"ordstack.process.{name}")
        self._readers = [
            asyncio.create_task(self._forward(process.stdout, is_stderr=False)),
            asyncio.create_task(self._forward(process.stderr, is_stderr=True)),
        ]
        self._watcher = asyncio.create_task(self._watch_exit())

    @classmethod
    async def spawn(
        cls,
        name: str,
        args: Sequence[str],
        *,
        on_stderr: Callable[[str], None] | None = None,
    ) -> "ServiceProcess":
        logger.info("Starting %s: %s", name, " ".join(args))
        process = await _exec(args)
        logger.info("%s started with PID %s", name, process.pid)
        return cls(name, process, on_stderr=on_stderr)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.exit_code is None

    @property
    def stderr(self) -> str:
        return "".join(self._stderr_chunks)

    async def _forward(self, stream: asyncio.StreamReader | None, *, is_stderr: bool) -> None:
        if stream is None:
            return
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace")
            text = line.rstrip()
            if text:
                self._output_logger.info(text)
            if is_stderr:
                if self._stderr_size < STDERR_BUFFER_LIMIT:
                    self._stderr_chunks.append(line)
                    self._stderr_size += len(line)
                if self.on_stderr is not None:
                    self.on_stderr(line)

    async def _watch_exit(self) -> None:
        code = await self.process.wait()
        # Let the readers drain what the child wrote before exiting
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(
                asyncio.gather(*self._readers, return_exceptions=True),
                READER_DRAIN_TIMEOUT,
            )
        self.exit_code = code
        self._exited.set()
        logger.info("%s (PID %s) exited with code %s", self.name, self.pid, code)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.exit_code

    async def terminate(self, grace: float) -> int:
        """SIGTERM, wait up to ``grace`` seconds, then kill. Returns the exit code."""
        if self._exited.is_set():
            return self.exit_code

        try:
            self.process.terminate()
        except ProcessLookupError:
            return await self.wait()

        try:
            await asyncio.wait_for(self._exited.wait(), grace)
        except asyncio.TimeoutError:
            logger.warning("%s did not exit within %ss, killing it", self.name, grace)
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
        return await self.wait()


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(args: Sequence[str], timeout: float) -> CommandResult:
    """Run a short-lived command to completion, killing it after ``timeout`` seconds."""
    logger.debug("Running: %s", " ".join(args))
    process = await _exec(args)
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as e:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        raise ExternalToolError(
            Path(args[0]).name,
            message=f"{Path(args[0]).name} timed out after {timeout}s",
            original_error=e,
        ) from e
    return CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def port_has_listener(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    """True when something accepts TCP connections on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


class PortReclaimer(Protocol):
    async def reclaim(self, port: int) -> None: ...


class NoopPortReclaimer:
    """Orphans on POSIX die with their parent's session; nothing to do."""

    async def reclaim(self, port: int) -> None:
        return None


class WindowsPortReclaimer:
    """Kills whatever process is listening on a port, via netstat and taskkill."""

    async def _run(self, *args: str) -> tuple[int, str]:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
        return process.returncode, stdout.decode("utf-8", errors="replace")

    @staticmethod
    def listening_pids(netstat_output: str, port: int) -> set[int]:
        pids = set()
        for line in netstat_output.splitlines():
            parts = line.split()
            if len(parts) < 5 or parts[3].upper() != "LISTENING":
                continue
            if not parts[1].endswith(f":{port}"):
                continue
            try:
                pids.add(int(parts[4]))
            except ValueError:
                continue
        return pids

    async def reclaim(self, port: int) -> None:
        try:
            code, output = await self._run("netstat", "-ano", "-p", "TCP")
            if code != 0:
                logger.warning("netstat exited with code %s, cannot reclaim port %s", code, port)
                return
            for pid in self.listening_pids(output, port):
                logger.info("Killing orphaned process %s holding port %s", pid, port)
                await self._run("taskkill", "/F", "/PID", str(pid))
        except OSError as e:
            logger.warning("Could not reclaim port %s: %s", port, e)


def default_port_reclaimer() -> PortReclaimer:
    if sys.platform == "win32":
        return WindowsPortReclaimer()
    return NoopPortReclaimer()
