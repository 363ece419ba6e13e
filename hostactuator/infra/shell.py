"""Shell executor: spawns commands, feeds the process registry, enforces timeouts."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import signal
import time
from collections.abc import AsyncIterator, Coroutine
from typing import Any

from hostactuator.infra.process_registry import KILL_GRACE_SECONDS, ProcessRegistry
from hostactuator.models.outcome import ExecOutcome, ResultStatus
from hostactuator.models.payloads import ExecPayload
from hostactuator.models.session import ProcessSession

try:
    import pty
except ImportError:  # no pseudo-terminals on this platform
    pty = None

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800  # seconds
MAX_TIMEOUT = 3600  # seconds, hard cap regardless of request
OUTPUT_DRAIN_TIMEOUT = 2.0
_READ_CHUNK = 4096


class _PtyInput:
    """Input handle writing to a PTY master through its own descriptor.

    The master is non-blocking once the read side is attached to the loop,
    so ``write`` only buffers and ``drain`` pushes the buffer out, waiting
    for the descriptor to become writable whenever the terminal's input
    queue is full.
    """

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._pending = bytearray()
        self._lock = asyncio.Lock()
        self._waiter: asyncio.Future | None = None

    def write(self, data: bytes) -> None:
        if self._fd < 0:
            raise OSError("terminal closed")
        self._pending += data

    async def drain(self) -> None:
        async with self._lock:
            while self._pending:
                if self._fd < 0:
                    raise OSError("terminal closed")
                try:
                    written = os.write(self._fd, self._pending)
                except BlockingIOError:
                    await self._wait_writable()
                    continue
                del self._pending[:written]

    async def _wait_writable(self) -> None:
        loop = asyncio.get_running_loop()
        fd = self._fd
        waiter = loop.create_future()

        def _ready() -> None:
            if not waiter.done():
                waiter.set_result(None)

        self._waiter = waiter
        loop.add_writer(fd, _ready)
        try:
            await waiter
        finally:
            self._waiter = None
            loop.remove_writer(fd)

    def close(self) -> None:
        if self._fd < 0:
            return
        if self._waiter is not None and not self._waiter.done():
            # unregister before the descriptor number can be reused
            self._waiter.get_loop().remove_writer(self._fd)
            self._waiter.set_exception(OSError("terminal closed"))
        with contextlib.suppress(OSError):
            os.close(self._fd)
        self._fd = -1
        self._pending.clear()


def _split_returncode(returncode: int) -> tuple[int | None, str | None]:
    """asyncio reports death-by-signal as a negative return code."""
    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, f"SIG{-returncode}"


class ShellRun:
    """A single spawned command and the outcomes it produces.

    Iterate ``outcomes()`` to receive at most one RUNNING outcome (when the
    run yields to the background) followed by exactly one terminal outcome.
    """

    def __init__(
        self,
        executor: ShellExecutor,
        session: ProcessSession,
        timeout: float,
        yield_after: float | None,
        launch: tuple[str, str, dict[str, str], bool],
    ) -> None:
        self._executor = executor
        self._registry = executor.registry
        self.session = session
        self.timeout = timeout
        self._yield_after = yield_after
        self._launch = launch
        self._terminate_requested = False
        self.process: asyncio.subprocess.Process | None = None
        self.spawn_error: str | None = None
        self._pty_input: _PtyInput | None = None
        self._pumps: list[asyncio.Task] = []
        self._exit_task: asyncio.Task | None = None
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._started = time.monotonic()

    @property
    def stdout(self) -> str:
        return "".join(self._stdout)

    @property
    def stderr(self) -> str:
        return "".join(self._stderr)

    def terminate(self) -> None:
        """Send SIGTERM if the process is still running. Does not wait.

        Called before the process exists, the signal is sent as soon as the
        spawn completes.
        """
        self._terminate_requested = True
        if self.process is None or self.process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            self.process.terminate()
            logger.info("Sent SIGTERM to session %s (pid=%s)", self.session.id, self.process.pid)

    async def spawn(self) -> None:
        """Start the process. Cancelling the caller does not abandon a half-started child."""
        await asyncio.shield(self._executor.track(self._spawn(*self._launch)))

    async def outcomes(self) -> AsyncIterator[ExecOutcome]:
        if self.spawn_error is not None or self._exit_task is None:
            yield self._error(f"Failed to spawn: {self.spawn_error}")
            return

        timeout_task = asyncio.create_task(asyncio.sleep(self.timeout))
        yield_task = None
        if self._yield_after is not None:
            yield_task = asyncio.create_task(asyncio.sleep(self._yield_after))

        waiting: set[asyncio.Future] = {self._exit_task, timeout_task}
        if yield_task is not None:
            waiting.add(yield_task)

        try:
            while True:
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if self._exit_task in done:
                    yield self._finished(self._exit_task.result())
                    return

                if timeout_task in done:
                    yield self._timed_out()
                    return

                if yield_task is not None and yield_task in done:
                    waiting.discard(yield_task)
                    yield_task = None
                    if not self.session.exited:
                        self._registry.mark_backgrounded(self.session.id)
                        logger.info(
                            "Session %s yielded to background (pid=%s)",
                            self.session.id, self.session.pid,
                        )
                        yield ExecOutcome(
                            status=ResultStatus.RUNNING,
                            stdout=self.stdout,
                            stderr=self.stderr,
                            session_id=self.session.id,
                            pid=self.session.pid,
                        )
        finally:
            timeout_task.cancel()
            if yield_task is not None:
                yield_task.cancel()

    async def _spawn(self, command: str, cwd: str, env: dict[str, str], use_pty: bool) -> None:
        fds = None
        if use_pty:
            if pty is None:
                logger.warning("PTY not available on this platform, falling back to pipes")
            else:
                try:
                    fds = pty.openpty()
                except OSError as e:
                    logger.warning("PTY allocation failed (%s), falling back to pipes", e)

        try:
            if fds is not None:
                self.process = await self._spawn_pty(command, cwd, env, *fds)
            else:
                self.process = await self._spawn_pipes(command, cwd, env)
        except (OSError, ValueError) as e:
            self.spawn_error = str(e)
            self._registry.mark_exited(self.session.id, 1)
            logger.error("Failed to spawn session %s: %s", self.session.id, e)
            return

        self._registry.attach(
            self.session.id,
            self.process.pid,
            self._pty_input or self.process.stdin,
        )
        self._exit_task = self._executor.track(self._wait_exit())
        logger.info(
            "Spawned session %s (pid=%s, pty=%s): %s",
            self.session.id, self.process.pid, self._pty_input is not None, command[:200],
        )
        if self._terminate_requested:
            self.terminate()

    async def _spawn_pipes(
        self, command: str, cwd: str, env: dict[str, str]
    ) -> asyncio.subprocess.Process:
        proc = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            command,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert proc.stdout is not None
        assert proc.stderr is not None
        self._pumps = [
            self._executor.track(self._pump(proc.stdout, self._stdout)),
            self._executor.track(self._pump(proc.stderr, self._stderr)),
        ]
        return proc

    async def _spawn_pty(
        self, command: str, cwd: str, env: dict[str, str], master_fd: int, slave_fd: int
    ) -> asyncio.subprocess.Process:
        env = {**env}
        env.setdefault("TERM", "xterm-256color")
        try:
            proc = await asyncio.create_subprocess_exec(
                "sh",
                "-c",
                command,
                cwd=cwd,
                env=env,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

        input_fd = os.dup(master_fd)
        os.set_blocking(input_fd, False)
        self._pty_input = _PtyInput(input_fd)

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader),
            os.fdopen(master_fd, "rb", buffering=0),
        )
        self._pumps = [self._executor.track(self._pump(reader, self._stdout))]
        return proc

    async def _pump(self, stream: asyncio.StreamReader, sink: list[str]) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            try:
                chunk = await stream.read(_READ_CHUNK)
            except OSError:
                # PTY masters raise EIO once the child side is closed
                break
            if not chunk:
                break
            self._collect(decoder.decode(chunk), sink)
        self._collect(decoder.decode(b"", final=True), sink)

    def _collect(self, text: str, sink: list[str]) -> None:
        if not text:
            return
        sink.append(text)
        self._registry.append_output(self.session.id, text)

    async def _wait_exit(self) -> int:
        assert self.process is not None
        returncode = await self.process.wait()
        if self._pumps:
            _, pending = await asyncio.wait(self._pumps, timeout=OUTPUT_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
        exit_code, exit_signal = _split_returncode(returncode)
        self._registry.mark_exited(self.session.id, exit_code, exit_signal)
        if self._pty_input is not None:
            self._pty_input.close()
        return returncode

    async def _escalate(self) -> None:
        """SIGTERM, then SIGKILL if the process outlives the grace period."""
        proc = self.process
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._executor.kill_grace)
        except asyncio.TimeoutError:
            logger.warning("Session %s ignored SIGTERM, killing...", self.session.id)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()

    def _finished(self, returncode: int) -> ExecOutcome:
        exit_code, _ = _split_returncode(returncode)
        exit_code = 1 if exit_code is None else exit_code
        duration_ms = int((time.monotonic() - self._started) * 1000)
        logger.info(
            "Session %s finished (exit=%s, %dms)", self.session.id, exit_code, duration_ms
        )
        return ExecOutcome(
            status=ResultStatus.COMPLETED if exit_code == 0 else ResultStatus.FAILED,
            stdout=self.stdout,
            stderr=self.stderr,
            session_id=self.session.id,
            pid=self.session.pid,
            exit_code=exit_code,
            duration_ms=duration_ms,
        )

    def _timed_out(self) -> ExecOutcome:
        logger.warning("Session %s timed out after %gs", self.session.id, self.timeout)
        self._executor.track(self._escalate())
        self._registry.mark_exited(self.session.id, 1, "SIGTERM")
        return self._error(f"Command timed out after {self.timeout:g}s")

    def _error(self, message: str) -> ExecOutcome:
        return ExecOutcome(
            status=ResultStatus.FAILED,
            stdout=self.stdout,
            stderr=self.stderr,
            session_id=self.session.id,
            pid=self.session.pid,
            error=message,
        )


class ShellExecutor:
    """Runs shell commands as registry-tracked sessions."""

    def __init__(
        self,
        registry: ProcessRegistry,
        root: str,
        default_timeout: float = DEFAULT_TIMEOUT,
        max_timeout: float = MAX_TIMEOUT,
        kill_grace: float = KILL_GRACE_SECONDS,
    ) -> None:
        self.registry = registry
        self.root = root
        self.default_timeout = default_timeout
        self.max_timeout = max_timeout
        self.kill_grace = kill_grace
        self._background: set[asyncio.Task] = set()

    def track(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a coroutine as a task that outlives the caller."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def resolve_cwd(self, cwd: str | None) -> str:
        if not cwd:
            return self.root
        return os.path.join(self.root, os.path.expanduser(cwd))

    def prepare(self, request: ExecPayload) -> ShellRun:
        """Register a session for the command without spawning it yet."""
        timeout = min(request.timeout or self.default_timeout, self.max_timeout)
        yield_after = None
        if request.yield_ms:
            yield_after = request.yield_ms / 1000
        elif request.background:
            yield_after = 0.0

        cwd = self.resolve_cwd(request.cwd)
        session = self.registry.create(request.command, cwd)
        env = os.environ.copy()
        if request.env:
            env.update(request.env)

        return ShellRun(
            self,
            session,
            timeout=timeout,
            yield_after=yield_after,
            launch=(request.command, cwd, env, request.pty),
        )

    async def start(self, request: ExecPayload) -> ShellRun:
        """Register a session and spawn the command.

        Spawn failures do not raise; the returned run reports them as its
        only outcome and the session stays in the registry as exited.
        """
        run = self.prepare(request)
        await run.spawn()
        return run

    async def run(self, request: ExecPayload) -> ExecOutcome:
        """Run to a terminal outcome, ignoring any background yield."""
        run = await self.start(request)
        outcome = None
        async for outcome in run.outcomes():
            if outcome.is_terminal:
                break
        assert outcome is not None
        return outcome
