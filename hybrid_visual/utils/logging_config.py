"""Unified logging configuration for comparator hosts.

Provides consistent logging for test runners, CI jobs and report builders:
    - Console and file handlers with rotation
    - JSON output mode for ingestion (ELK, Vector, etc.)
    - Contextual fields (checkpoint, suite, run_id)
    - Warning capture (Python warnings → logging)

Public API:
    setup_logging(log_level="INFO", context={"suite": "smoke"})
    get_logger(name)
    push_context(checkpoint="login_page")
    pop_context(keys=["checkpoint"])
    with log_context(checkpoint="login_page"): ...

Format examples:
    Human: 2026-10-19T13:45:12.345Z | INFO     | checkpoint=login_page | Pixel diff=0.0120%
    JSON: {"t":"2026-10-19T13:45:12.345Z","lvl":"INFO","checkpoint":"login_page","msg":"..."}

Library modules never call setup_logging(); they only use
logging.getLogger(__name__). Configuring handlers is the host's job.
Context uses contextvars, so fields pushed in one thread never leak into
comparisons running on another.
"""

import contextvars
import json
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


_context_var = contextvars.ContextVar('hybrid_visual_log_context', default={})

_configured = False


class ContextFormatter(logging.Formatter):
    """Formatter that appends contextual fields pushed via push_context().

    Parameters
    ----------
    fmt_mode : str
        "human" (default) or "json"
    use_color : bool
        Colorize the level name when writing to a TTY
    tz : str
        "UTC" (default) or "local"
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt_mode: str = "human", use_color: bool = True, tz: str = "UTC"):
        super().__init__()
        if fmt_mode not in ("human", "json"):
            raise ValueError(f"Unknown fmt_mode: {fmt_mode}. Use 'human' or 'json'.")
        self.fmt_mode = fmt_mode
        self.use_color = use_color and sys.stderr.isatty()
        self.tz = tz

    def format(self, record: logging.LogRecord) -> str:
        context = _context_var.get({})
        if self.tz == "UTC":
            ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        else:
            ts = datetime.fromtimestamp(record.created)

        if self.fmt_mode == "json":
            return self._format_json(record, ts, context)
        return self._format_human(record, ts, context)

    def _format_json(self, record: logging.LogRecord, ts: datetime, context: dict) -> str:
        payload = {
            't': ts.isoformat(),
            'lvl': record.levelname,
            'name': record.name,
            'pid': os.getpid(),
            'msg': record.getMessage(),
        }
        payload.update(context)
        if record.exc_info:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)

    def _format_human(self, record: logging.LogRecord, ts: datetime, context: dict) -> str:
        ts_str = ts.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        parts = [ts_str, '|', level, '|']
        if context:
            parts.append(' '.join(f"{k}={v}" for k, v in context.items()))
            parts.append('|')
        parts.append(record.getMessage())

        line = ' '.join(parts)
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    rotate: Optional[Dict[str, Any]] = None,
    tz: str = "UTC",
    capture_warnings: bool = True,
    quiet_libs: Optional[List[str]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> List[logging.Handler]:
    """Configure the root logger (idempotent).

    Parameters
    ----------
    log_level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL"
    log_file : str, optional
        Log file path; None for no file logging
    json : bool
        Use JSON lines for the file handler, default False
    color : bool
        ANSI colors on the console handler, default True
    to_stderr : bool
        Log to stderr, default True
    rotate : dict, optional
        {"mode": "size", "max_bytes": 10_000_000, "backup_count": 5} or
        {"mode": "time", "when": "D", "interval": 1, "backup_count": 7}
    tz : str
        "UTC" (default) or "local"
    capture_warnings : bool
        Route Python warnings into logging, default True
    quiet_libs : list[str], optional
        Loggers forced to WARNING (e.g. ["PIL", "urllib3"])
    context : dict, optional
        Initial contextual fields (e.g. {"suite": "nightly"})

    Returns
    -------
    list[logging.Handler]
        Handlers installed on the root logger

    Notes
    -----
    Repeated calls replace the handlers installed by the previous call.
    """
    global _configured

    root = logging.getLogger()
    if _configured:
        root.handlers.clear()

    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")
    root.setLevel(level)

    handlers: List[logging.Handler] = []
    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter("human", color, tz))
        handlers.append(console)
    if log_file:
        handlers.append(_create_file_handler(log_file, rotate, json, tz))

    for handler in handlers:
        root.addHandler(handler)

    if context:
        push_context(**context)

    for lib in quiet_libs or []:
        logging.getLogger(lib).setLevel(logging.WARNING)

    if capture_warnings:
        logging.captureWarnings(True)

    _configured = True
    return handlers


def _create_file_handler(
    log_file: str,
    rotate: Optional[Dict[str, Any]],
    json_format: bool,
    tz: str
) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if rotate:
        mode = rotate.get('mode', 'size')
        if mode == 'size':
            handler = logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=rotate.get('max_bytes', 10_000_000),
                backupCount=rotate.get('backup_count', 5)
            )
        elif mode == 'time':
            handler = logging.handlers.TimedRotatingFileHandler(
                log_path,
                when=rotate.get('when', 'D'),
                interval=rotate.get('interval', 1),
                backupCount=rotate.get('backup_count', 7)
            )
        else:
            raise ValueError(f"Unknown rotation mode: {mode}. Use 'size' or 'time'.")
    else:
        handler = logging.FileHandler(log_path)

    handler.setFormatter(ContextFormatter("json" if json_format else "human", use_color=False, tz=tz))
    return handler


def get_logger(name: str) -> logging.Logger:
    """Return logger by name (typically __name__)."""
    return logging.getLogger(name)


def push_context(**kwargs) -> None:
    """Add contextual fields to all subsequent records in this context.

    Examples
    --------
    >>> push_context(suite="nightly", checkpoint="login_page")
    >>> logger.info("Compared")  # → "... | suite=nightly checkpoint=login_page | Compared"
    """
    current = _context_var.get({})
    _context_var.set({**current, **kwargs})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Remove contextual fields; None clears everything."""
    if keys is None:
        _context_var.set({})
        return
    current = dict(_context_var.get({}))
    for key in keys:
        current.pop(key, None)
    _context_var.set(current)


def current_context() -> Dict[str, Any]:
    """Return a copy of the contextual fields active in this context."""
    return dict(_context_var.get({}))


@contextmanager
def log_context(**kwargs) -> Iterator[None]:
    """Scope contextual fields to a block, restoring the previous fields on exit.

    Examples
    --------
    >>> with log_context(checkpoint="cart_summary"):
    ...     comparator.compare(baseline, actual)
    """
    fields = {k: v for k, v in kwargs.items() if v is not None}
    token = _context_var.set({**_context_var.get({}), **fields})
    try:
        yield
    finally:
        _context_var.reset(token)
