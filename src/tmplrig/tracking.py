"""Process tracking files.

Every long-lived helper process (the automation driver) gets a file
``<pid>.<uuid>.pid`` containing its pid in a tracking directory. If the
test run dies without running its exit hooks, :func:`reap_orphans` (or
``tmplrig reap``) can find and kill whatever was left behind.
"""

from __future__ import annotations

import logging
import os
import signal
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import SetupError
from .retry import retry

logger = logging.getLogger("tmplrig.tracking")

WRITE_ATTEMPTS = 3


@dataclass
class ReapResult:
    """What :func:`reap_orphans` found for one tracking file."""
    path: Path
    pid: Optional[int]
    killed: bool
    removed: bool


def ensure_tracking_dir(tracking_dir: Path) -> Path:
    """Fail before anything is launched if the tracking directory is unusable."""
    tracking_dir = Path(tracking_dir)
    if not tracking_dir.is_dir():
        raise SetupError(
            f"Invalid process tracking folder: {tracking_dir}. "
            "Set TMPLRIG_TRACKING_DIR (or tracking_dir in the config file) to an existing folder."
        )
    return tracking_dir


def write_tracking_file(tracking_dir: Path, pid: int, output: Optional[logging.Logger] = None) -> Path:
    """Write ``<pid>.<uuid>.pid``; retried on transient I/O failure."""
    pid_file = Path(tracking_dir) / f"{pid}.{uuid.uuid4()}.pid"
    sink = output or logger

    def report(attempt, _value, error) -> None:
        sink.warning(f"Can't write file to process tracking folder: {tracking_dir} ({error})")

    outcome = retry(
        lambda: pid_file.write_text(str(pid)),
        attempts=WRITE_ATTEMPTS,
        retry_on=(OSError,),
        on_failure=report,
    )
    if not outcome.succeeded:
        raise SetupError(f"Failed to write file for process {pid}")
    return pid_file


def remove_tracking_file(pid_file: Optional[Path]) -> None:
    if pid_file is None:
        return
    try:
        Path(pid_file).unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete tracking file {pid_file}: {e}")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True


def _kill_pid(pid: int) -> bool:
    try:
        if os.name != "nt":
            os.killpg(os.getpgid(pid), signal.SIGKILL)
        else:
            os.kill(pid, signal.SIGTERM)
        return True
    except ProcessLookupError:
        return False
    except OSError:
        try:
            os.kill(pid, signal.SIGKILL if os.name != "nt" else signal.SIGTERM)
            return True
        except OSError:
            return False


def reap_orphans(tracking_dir: Path) -> list[ReapResult]:
    """Kill every still-running tracked process and delete its tracking file."""
    results: list[ReapResult] = []
    tracking_dir = Path(tracking_dir)
    if not tracking_dir.is_dir():
        return results

    for pid_file in sorted(tracking_dir.glob("*.pid")):
        pid: Optional[int] = None
        try:
            pid = int(pid_file.read_text().strip())
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable tracking file {pid_file}: {e}")

        killed = False
        if pid is not None and pid > 1 and _pid_alive(pid):
            logger.info(f"Killing orphaned process {pid} from {pid_file.name}")
            killed = _kill_pid(pid)

        try:
            pid_file.unlink()
            removed = True
        except OSError as e:
            logger.warning(f"Could not delete tracking file {pid_file}: {e}")
            removed = False
        results.append(ReapResult(path=pid_file, pid=pid, killed=killed, removed=removed))
    return results
