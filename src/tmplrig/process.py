"""Running external tools with captured, streamed output."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import subprocess
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, Optional, Sequence

from .errors import ProcessFailedError

logger = logging.getLogger("tmplrig.process")

LineListener = Callable[[str, str], None]


def _merge_env(env: Optional[dict[str, str]]) -> dict[str, str]:
    full_env = os.environ.copy()
    for key, value in (env or {}).items():
        if value is None:
            full_env.pop(key, None)
        else:
            full_env[key] = str(value)
    return full_env


def kill_process_tree(process: subprocess.Popen, timeout: float = 10.0) -> None:
    """Terminate a child and everything in its process group."""
    if process.poll() is not None:
        return

    pid = process.pid
    try:
        if os.name != "nt":
            os.killpg(os.getpgid(pid), signal.SIGTERM)
        else:
            process.terminate()
    except ProcessLookupError:
        return
    except OSError as e:
        logger.warning(f"Error signalling process group of {pid}: {e}")
        try:
            process.terminate()
        except ProcessLookupError:
            return

    try:
        process.wait(timeout=timeout)
        return
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {pid} didn't stop gracefully, sending SIGKILL")

    try:
        if os.name != "nt":
            os.killpg(os.getpgid(pid), signal.SIGKILL)
        else:
            process.kill()
    except (ProcessLookupError, OSError):
        pass
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error(f"Process {pid} survived SIGKILL")


class ProcessRun:
    """A started external process whose output is captured and streamed.

    Every line written by the child is appended to :attr:`output` or
    :attr:`error` and also written to the ``output`` logger, so a failed test
    run can be diagnosed from the log alone.
    """

    def __init__(
        self,
        output: logging.Logger,
        process: subprocess.Popen,
        command: str,
        working_directory: Path,
        on_line: Optional[LineListener] = None,
    ):
        self._output_sink = output
        self.process = process
        self.command = command
        self.working_directory = Path(working_directory)
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._lock = Lock()
        self._listeners: list[LineListener] = [on_line] if on_line else []
        self._exited = Event()
        self._readers = [
            Thread(target=self._drain, args=(process.stdout, "stdout"), daemon=True),
            Thread(target=self._drain, args=(process.stderr, "stderr"), daemon=True),
        ]
        for reader in self._readers:
            reader.start()
        Thread(target=self._watch, daemon=True).start()

    @classmethod
    def start(
        cls,
        output: logging.Logger,
        working_directory: str | Path,
        command: str,
        arguments: Sequence[str] = (),
        env: Optional[dict[str, str]] = None,
        on_line: Optional[LineListener] = None,
    ) -> "ProcessRun":
        """Start ``command`` with ``arguments`` in ``working_directory``.

        Failures to start the executable propagate unchanged.
        """
        argv = [command, *[str(a) for a in arguments]]
        display = " ".join(shlex.quote(a) for a in argv)
        output.info(f"Running '{display}' in '{working_directory}'")
        process = subprocess.Popen(
            argv,
            cwd=str(working_directory),
            env=_merge_env(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            start_new_session=os.name != "nt",
        )
        logger.debug(f"Started pid {process.pid}: {display}")
        return cls(output, process, display, Path(working_directory), on_line=on_line)

    @classmethod
    def start_via_shell(
        cls,
        output: logging.Logger,
        working_directory: str | Path,
        command_line: str,
        env: Optional[dict[str, str]] = None,
        on_line: Optional[LineListener] = None,
    ) -> "ProcessRun":
        """Start a command line through the platform shell."""
        output.info(f"Running '{command_line}' in '{working_directory}' via shell")
        # nosec B602: command lines come from harness configuration, not test input
        process = subprocess.Popen(
            command_line,
            shell=True,  # nosec B602
            cwd=str(working_directory),
            env=_merge_env(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            start_new_session=os.name != "nt",
        )
        return cls(output, process, command_line, Path(working_directory), on_line=on_line)

    @classmethod
    def run_via_shell(
        cls,
        output: logging.Logger,
        working_directory: str | Path,
        command_line: str,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> "ProcessRun":
        """Run a command line through the shell and wait for it to finish."""
        run = cls.start_via_shell(output, working_directory, command_line, env=env)
        run.wait_for_exit(timeout=timeout)
        return run

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _drain(self, stream, name: str) -> None:
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, ""):
                line = raw.rstrip("\r\n")
                with self._lock:
                    (self._stdout if name == "stdout" else self._stderr).append(line)
                    listeners = list(self._listeners)
                if name == "stdout":
                    self._output_sink.info(f"[{self.pid}] {line}")
                else:
                    self._output_sink.warning(f"[{self.pid}] {line}")
                for listener in listeners:
                    try:
                        listener(name, line)
                    except Exception:
                        logger.exception(f"Line listener failed for pid {self.pid}")
        except ValueError:
            # stream closed underneath us by kill()
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _watch(self) -> None:
        self.process.wait()
        for reader in self._readers:
            reader.join(timeout=5)
        self._output_sink.info(f"Process '{self.command}' (pid {self.pid}) exited with code {self.process.returncode}")
        self._exited.set()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def output(self) -> str:
        with self._lock:
            return "\n".join(self._stdout)

    @property
    def error(self) -> str:
        with self._lock:
            return "\n".join(self._stderr)

    @property
    def output_lines(self) -> list[str]:
        with self._lock:
            return list(self._stdout)

    @property
    def exit_code(self) -> Optional[int]:
        if not self._exited.is_set():
            return None
        return self.process.returncode

    @property
    def has_exited(self) -> bool:
        return self._exited.is_set()

    def formatted_output(self) -> str:
        return (
            f"Process '{self.command}' exited with code '{self.exit_code}'\n"
            f"StdErr: {self.error}\n"
            f"StdOut: {self.output}"
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def wait_for_exit(self, assert_success: bool = False, timeout: Optional[float] = None) -> int:
        """Block until the process and its output readers are done.

        Raises :class:`ProcessFailedError` if ``assert_success`` is set and
        the exit code is nonzero, and :class:`subprocess.TimeoutExpired` if
        ``timeout`` elapses first.
        """
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.command, timeout)
        if assert_success and self.exit_code != 0:
            raise ProcessFailedError(self)
        return self.process.returncode

    async def exited(self) -> int:
        """Await process completion without blocking the event loop."""
        return await asyncio.to_thread(self.wait_for_exit)

    def kill(self, timeout: float = 10.0) -> None:
        """Kill the process tree; safe to call more than once."""
        kill_process_tree(self.process, timeout=timeout)
        self._exited.wait(timeout)

    def __enter__(self) -> "ProcessRun":
        return self

    def __exit__(self, *exc) -> None:
        self.kill()
