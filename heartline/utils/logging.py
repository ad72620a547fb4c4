"""Shared logging setup for the CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path


def setup_logging(
    verbose: bool = False,
    *,
    log_file: Path | str | None = None,
    mode: str = "a",
) -> None:
    """Configure root logging with a stream handler and an optional file handler.

    Logs go to stderr so they do not interleave with rendered CLI output.
    Falls back to stream-only logging if the file can't be opened.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO.
        log_file: Optional path of a log file.
        mode: File open mode ("w" to overwrite, "a" to append).
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path, mode=mode))
        except OSError as exc:
            print(f"Warning: could not open log file {log_path}: {exc}", file=sys.stderr)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    # urllib3 logs every connection attempt at DEBUG; probes would flood the log
    logging.getLogger("urllib3").setLevel(logging.WARNING)
