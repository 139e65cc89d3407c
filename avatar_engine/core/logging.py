"""
Structured logging configuration using structlog.

Every record goes to the console and to a per-run file under
``settings.logs_dir``. Output is JSON unless ``settings.debug`` is on, in
which case the console renderer is used. Request and session ids are
carried through contextvars (see bind_context).
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import Processor

from avatar_engine.core.config import settings

LOG_FILE_PREFIX = "avatar_engine_"


def _cull_old_logs(logs_dir: Path, keep: int) -> None:
    """Delete all but the ``keep`` newest run logs."""
    runs = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    for stale in runs[keep:]:
        try:
            stale.unlink()
        except OSError:
            pass  # still open in another process


def _processors(debug: bool) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]
    if debug:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return processors


def _install_handlers(log_file: Path, level: int) -> None:
    root = logging.getLogger()
    # Reconfiguration (tests, reloads) must not stack handlers
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    root.setLevel(level)

    plain = logging.Formatter("%(message)s")
    for handler in (logging.StreamHandler(), logging.FileHandler(log_file, mode="w")):
        handler.setFormatter(plain)
        root.addHandler(handler)


def configure_logging(
    log_runs_to_keep: Optional[int] = None,
    logs_dir: Optional[Path] = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Call once at startup, before any logging. Creates
    ``<logs_dir>/avatar_engine_YYYYMMDD_HHMMSS.log`` and culls older runs.

    Args:
        log_runs_to_keep: Run logs to retain, this one included
            (default: settings.log_runs_to_keep)
        logs_dir: Directory for run logs (default: settings.logs_dir)
    """
    keep = log_runs_to_keep if log_runs_to_keep is not None else settings.log_runs_to_keep
    logs_dir = Path(logs_dir or settings.logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    _cull_old_logs(logs_dir, keep=max(keep - 1, 0))

    log_file = logs_dir / f"{LOG_FILE_PREFIX}{datetime.now():%Y%m%d_%H%M%S}.log"
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    _install_handlers(log_file, level)
    structlog.configure(
        processors=_processors(settings.debug),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Logger for module ``name``; modules may also call structlog.get_logger directly."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind values included in every later log record of this task.

        bind_context(session_id=session_id, request_id=request_id)
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop everything bound with bind_context (end of request)."""
    structlog.contextvars.clear_contextvars()
