"""Logging setup for the ledgersync backend.

Service loggers live under ``ledgersync.api``; the core library logs under
``ledgersync.*`` through ``logging.getLogger(__name__)``, so one handler on
the ``ledgersync`` logger covers both.
"""

import logging
import sys

ROOT_LOGGER = "ledgersync"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach a stderr handler to the ``ledgersync`` logger (idempotent)."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())
    if not any(getattr(h, "_ledgersync", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._ledgersync = True
        logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a service logger, e.g. ``get_logger("ledgersync.api.sync")``."""
    return logging.getLogger(name)


def log_sync_operation(
    workspace: str,
    operation: str,
    *,
    success: bool,
    revision: int | None = None,
    detail: str | None = None,
) -> None:
    """One structured line per sync-surface operation.

    Never pass secrets or request headers here; ``workspace`` is the
    client-chosen key, which is not a credential.
    """
    logger = logging.getLogger(f"{ROOT_LOGGER}.api.sync")
    status = "ok" if success else "failed"
    parts = [f"SYNC | {workspace} | {operation} | {status}"]
    if revision is not None:
        parts.append(f"revision={revision}")
    if detail:
        parts.append(detail)
    message = " | ".join(parts)
    if success:
        logger.info(message)
    else:
        logger.warning(message)
