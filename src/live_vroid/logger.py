"""
Live-Vroid Bridge Logger

Provides persistent file logging for diagnosing connection and command issues.
Logs are written to ~/.live_vroid/logs/bridge.log by default.

Features:
- Rotating log files (max 5MB, keeps 3 backups)
- Command dispatch logging with timing
- Connection lifecycle events
- stderr mirror (stdout carries the MCP protocol and must stay clean)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

LOG_FILE_NAME = "bridge.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Parent of every module logger in the package
_logger = logging.getLogger("live_vroid")

_log_file: Optional[Path] = None


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: str = "INFO",
    stream=None,
) -> logging.Logger:
    """Attach file and stream handlers to the package logger.

    Safe to call more than once; previously attached handlers are replaced.

    Args:
        log_dir: Directory for the rotating log file, None disables file logging
        level: Log level name for the stream handler
        stream: Stream for console output (default: stderr)

    Returns:
        The configured package logger
    """
    global _log_file

    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
        handler.close()

    _logger.setLevel(logging.DEBUG)
    _logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    stream_handler.setFormatter(formatter)
    _logger.addHandler(stream_handler)

    _log_file = None
    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        _log_file = log_path / LOG_FILE_NAME

        file_handler = RotatingFileHandler(
            _log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        _logger.addHandler(file_handler)

    return _logger


def get_log_file_path() -> str:
    """Get the path to the log file."""
    return str(_log_file) if _log_file else "N/A"


def log_startup(server_url: str, version: str):
    """Log bridge startup."""
    _logger.info("=" * 60)
    _logger.info("Live-Vroid MCP Bridge Starting")
    _logger.info(f"  Version: {version}")
    _logger.info(f"  Godot URL: {server_url}")
    _logger.info(f"  Python: {sys.version.split()[0]}")
    _logger.info(f"  Log file: {get_log_file_path()}")
    _logger.info("=" * 60)


def log_shutdown():
    """Log bridge shutdown."""
    _logger.info("Live-Vroid MCP Bridge Shutdown")
    _logger.info("-" * 60)


def log_command(
    command_type: str,
    params: Dict[str, Any],
    duration_ms: float,
    success: bool,
    error: Optional[str] = None,
):
    """Log command dispatch with timing."""
    status = "OK" if success else "FAILED"
    param_str = _summarize_params(params)

    if success:
        _logger.info(f"CMD {command_type} | {status} | {duration_ms:.1f}ms | {param_str}")
    else:
        _logger.warning(f"CMD {command_type} | {status} | {duration_ms:.1f}ms | {param_str} | Error: {error}")


def log_connection(event: str, details: str = ""):
    """Log connection events."""
    _logger.info(f"CONNECTION {event}: {details}")


def _summarize_params(params: Dict[str, Any], max_len: int = 100) -> str:
    """Summarize params dict for logging."""
    if not params:
        return "{}"

    # Filter out large values
    summary = {}
    for k, v in params.items():
        if isinstance(v, str) and len(v) > 50:
            summary[k] = f"{v[:47]}..."
        elif isinstance(v, (list, dict)) and len(str(v)) > 50:
            summary[k] = f"<{type(v).__name__}:{len(v)} items>"
        else:
            summary[k] = v

    result = str(summary)
    if len(result) > max_len:
        return result[: max_len - 3] + "..."
    return result
