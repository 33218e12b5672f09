"""Logging setup for tmplrig.

Harness modules log through named stdlib loggers (``tmplrig.process``,
``tmplrig.driver`` ...). Each test gets a child logger of
``tmplrig.output`` that plays the role of the test's output sink: external
tool output is streamed into it line by line.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

OUTPUT_LOGGER = "tmplrig.output"


def default_log_dir() -> Path:
    return Path(os.environ.get("TMPLRIG_LOG_DIR", tempfile.gettempdir() + "/tmplrig-logs"))


def setup_logging(log_dir: Optional[str | Path] = None, level: str = "DEBUG") -> Path:
    """Attach a file handler to the ``tmplrig`` logger (once per path).

    Returns the log file path.
    """
    log_path = Path(log_dir) if log_dir else default_log_dir()
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = str(log_path / "tmplrig.log")

    root = logging.getLogger("tmplrig")
    root.setLevel(getattr(logging, str(level).upper(), logging.DEBUG))
    if not any(
        isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == log_file
        for h in root.handlers
    ):
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)
    return Path(log_file)


def output_for(name: str) -> logging.Logger:
    """Return the output sink for one test."""
    safe = name.replace(".", "_").replace("/", "_") or "anonymous"
    return logging.getLogger(f"{OUTPUT_LOGGER}.{safe}")


def null_output() -> logging.Logger:
    """Output sink that drops everything (used for best-effort tool calls)."""
    sink = logging.getLogger(f"{OUTPUT_LOGGER}.null")
    sink.propagate = False
    if not sink.handlers:
        sink.addHandler(logging.NullHandler())
    return sink
