"""
Utility functions for pkgsmith builds.

Includes logging setup, console output, and file operations.
"""

import hashlib
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping, Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console(stderr=True)


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for a build.

    Args:
        log_file: Optional path to a log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("pkgsmith")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers
    logger.propagate = False

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler: logging.Handler = RichHandler(
                console=console, rich_tracebacks=True, show_time=False, markup=False,
            )
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())

        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for key in ("package", "arch", "step", "event", "metadata"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class SessionLogger(logging.LoggerAdapter):
    """
    Logger handle carried by a build session.

    Prefixes every message with ``package/arch:`` and attaches ``package``
    and ``arch`` to each record so the structured formatter can emit them.
    Per-call ``extra`` values are merged, not replaced.
    """

    def __init__(self, logger: logging.Logger, package: str, arch: str):
        super().__init__(logger, {"package": package, "arch": arch})

    @property
    def prefix(self) -> str:
        return f"{self.extra['package']}/{self.extra['arch']}"

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return f"{self.prefix}: {msg}", kwargs


def copy_file(base: Path, rel_path: Path | str, dest: Path, mode: Optional[int] = None) -> Path:
    """
    Copy ``base/rel_path`` to ``dest/rel_path``, creating parent directories.

    Both handles are closed on every exit path.

    Returns:
        The destination path
    """
    src_path = base / rel_path
    dest_path = dest / rel_path
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    with open(src_path, "rb") as in_f, open(dest_path, "wb") as out_f:
        shutil.copyfileobj(in_f, out_f)

    if mode is not None:
        os.chmod(dest_path, mode)
    return dest_path


def get_file_checksum(file_path: Path) -> str:
    """
    Calculate SHA256 checksum of file.

    Args:
        file_path: Path to file

    Returns:
        Hex digest of SHA256 checksum
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "1m 23s", "45s")
    """
    if seconds < 60:
        return f"{int(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def print_banner(title: str) -> None:
    """
    Print a banner to console.

    Args:
        title: Banner title
    """
    console.rule(f"[bold blue]{title}[/bold blue]")


def print_success(message: str) -> None:
    """Print success message to console."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_error(message: str) -> None:
    """Print error message to console."""
    console.print(f"[bold red]✗[/bold red] {message}")


def print_warning(message: str) -> None:
    """Print warning message to console."""
    console.print(f"[bold yellow]⚠[/bold yellow] {message}")


def print_info(message: str) -> None:
    """Print info message to console."""
    console.print(f"[bold cyan]ℹ[/bold cyan] {message}")
