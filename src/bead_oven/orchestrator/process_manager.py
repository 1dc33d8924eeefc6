"""Child process tracking and signal-driven shutdown.

Every child the orchestrator starts (agent runs, gate commands, tracker and
VCS calls, the sleep inhibitor helper) goes through one ``ProcessManager``
so that an interrupt never leaves orphans behind.

The signal handler itself only sets the shutdown flag, sends SIGTERM to the
tracked children and raises ``SystemExit``. Waiting for the children and
escalating to SIGKILL happens in ``kill_all`` while the stack unwinds through
``handle_signals``, never inside the handler.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from bead_oven.orchestrator.models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0
FORCED_EXIT_CODE = 130


@dataclass(slots=True)
class TrackedProcess:
    """Registry entry for one live child."""

    process: subprocess.Popen[str]
    name: str
    pid: int


class ProcessManager:
    """Owns the set of live children and the shutdown flag."""

    def __init__(
        self,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        force_exit: Callable[[int], object] = os._exit,
    ) -> None:
        self.grace_seconds = grace_seconds
        self._force_exit = force_exit
        self._processes: dict[subprocess.Popen[str], TrackedProcess] = {}
        self._shutting_down = False
        self._starting = 0
        self._pending_signal: int | None = None

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def tracked(self) -> list[TrackedProcess]:
        return list(self._processes.values())

    def register(self, process: subprocess.Popen[str], name: str = "unknown") -> None:
        self._processes[process] = TrackedProcess(process=process, name=name, pid=process.pid)
        logger.debug("registered process: %s (pid=%d)", name, process.pid)

    def unregister(self, process: subprocess.Popen[str]) -> None:
        tracked = self._processes.pop(process, None)
        if tracked is not None:
            logger.debug("unregistered process: %s (pid=%d)", tracked.name, tracked.pid)

    def spawn(
        self,
        argv: Sequence[str],
        *,
        name: str | None = None,
        cwd: Path | None = None,
    ) -> subprocess.Popen[str]:
        """Start a long-lived helper with discarded output and track it."""

        with self._starting_child():
            process = subprocess.Popen(  # noqa: S603
                list(argv),
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                text=True,
            )
            self.register(process, name or argv[0])
        return process

    def run(  # noqa: PLR0913
        self,
        argv: Sequence[str],
        *,
        name: str | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        on_stdout_line: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Run a command to completion, capturing both output streams.

        Raises ``FileNotFoundError`` when the executable does not exist;
        callers translate that into their own failure shape.
        """

        display_name = name or argv[0]
        with self._starting_child():
            process = subprocess.Popen(  # noqa: S603
                list(argv),
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
            self.register(process, display_name)
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        try:
            readers = (
                threading.Thread(
                    target=_drain,
                    args=(process.stdout, stdout_lines, on_stdout_line),
                    name=f"{display_name}-stdout",
                    daemon=True,
                ),
                threading.Thread(
                    target=_drain,
                    args=(process.stderr, stderr_lines, None),
                    name=f"{display_name}-stderr",
                    daemon=True,
                ),
            )
            for reader in readers:
                reader.start()
            exit_code = process.wait()
            for reader in readers:
                reader.join()
        finally:
            # A child still running here is left for kill_all.
            if process.poll() is not None:
                self.unregister(process)

        return CommandResult(
            exit_code=exit_code,
            stdout="".join(stdout_lines),
            stderr="".join(stderr_lines),
        )

    def stop(self, process: subprocess.Popen[str], *, grace_seconds: float | None = None) -> None:
        """Stop one child: SIGTERM, wait, then SIGKILL if it lingers."""

        self.unregister(process)
        _terminate_process(
            process,
            grace_seconds=self.grace_seconds if grace_seconds is None else grace_seconds,
        )

    def terminate_all(self) -> None:
        """Send SIGTERM to every tracked child without waiting."""

        tracked = self.tracked
        if not tracked:
            logger.debug("no child processes to terminate")
            return
        logger.warning("sending SIGTERM to %d child process(es)", len(tracked))
        for entry in tracked:
            _send_terminate(entry)

    def kill_all(self, *, grace_seconds: float | None = None) -> None:
        """Terminate every tracked child and wait, escalating to SIGKILL."""

        tracked = self.tracked
        if not tracked:
            logger.debug("no child processes to kill")
            return

        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        logger.warning("stopping %d child process(es)", len(tracked))
        for entry in tracked:
            _send_terminate(entry)

        deadline = time.monotonic() + grace
        for entry in tracked:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                returncode = entry.process.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "%s (pid=%d) did not exit within %.1fs, sending SIGKILL",
                    entry.name,
                    entry.pid,
                    grace,
                )
                try:
                    entry.process.kill()
                except OSError:
                    logger.debug("%s (pid=%d) already exited", entry.name, entry.pid)
                    continue
                entry.process.wait()
                logger.debug("%s (pid=%d) killed with SIGKILL", entry.name, entry.pid)
            else:
                logger.debug(
                    "%s (pid=%d) exited with code %s",
                    entry.name,
                    entry.pid,
                    returncode,
                )

        self._processes.clear()
        logger.debug("all child processes terminated")

    @contextmanager
    def handle_signals(self) -> Iterator[ProcessManager]:
        """Install SIGINT/SIGTERM handlers; stop all children on exit."""

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        installed = False
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
            installed = True
            logger.debug("signal handlers installed")
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("signal handlers not installed outside the main thread")

        try:
            yield self
        finally:
            self.kill_all()
            if installed:
                try:
                    signal.signal(signal.SIGINT, original_sigint)
                    signal.signal(signal.SIGTERM, original_sigterm)
                except ValueError:
                    pass

    @contextmanager
    def _starting_child(self) -> Iterator[None]:
        """Hold back signals until the child being started is registered.

        A signal landing between ``Popen`` returning and ``register`` would
        otherwise leave that child untracked. It is replayed on exit.
        """

        self._starting += 1
        try:
            yield
        finally:
            self._starting -= 1
            if self._starting == 0 and self._pending_signal is not None:
                signum, self._pending_signal = self._pending_signal, None
                self._shutdown(signum)

    def _handle_signal(self, signum: int, _: object | None) -> None:
        name = _signal_name(signum)
        if self._shutting_down or self._pending_signal is not None:
            logger.error("received %s again, forcing exit", name)
            self._force_exit(FORCED_EXIT_CODE)
            return
        if self._starting:
            logger.debug("received %s while starting a child, deferring", name)
            self._pending_signal = signum
            return
        self._shutdown(signum)

    def _shutdown(self, signum: int) -> None:
        name = _signal_name(signum)
        self._shutting_down = True
        logger.warning("received %s, shutting down", name)
        self.terminate_all()
        exit_code = 128 + signum
        logger.info("exiting with code %d", exit_code)
        raise SystemExit(exit_code)


def _drain(
    stream: IO[str] | None,
    sink: list[str],
    on_line: Callable[[str], None] | None,
) -> None:
    if stream is None:
        return
    with stream:
        for line in stream:
            sink.append(line)
            if on_line is not None:
                on_line(line.rstrip("\n"))


def _send_terminate(entry: TrackedProcess) -> None:
    if entry.process.poll() is not None:
        return
    try:
        logger.debug("sending SIGTERM to %s (pid=%d)", entry.name, entry.pid)
        entry.process.terminate()
    except OSError:
        logger.debug("%s (pid=%d) already exited", entry.name, entry.pid)


def _terminate_process(process: subprocess.Popen[str], *, grace_seconds: float) -> None:
    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait()


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
