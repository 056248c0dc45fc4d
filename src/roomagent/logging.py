"""Logging for roomagent.

Every module logs through a child of the `roomagent` logger. Two extra
levels sit around the standard ones: VERBOSE (15) for per-cycle detail such
as context sizes, TRACE (5) for raw traffic. Output goes to the configured
file (or $ROOMAGENT_LOG), else to stderr.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from roomagent.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("roomagent")

# -v count to level: errors only .. everything
_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Handlers installed by setup_logging, replaced on the next call
_handlers: list[logging.Handler] = []


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level; `verbose` wins over `level`, unknown names mean INFO."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        level = logging.getLevelName(config.level.upper())
        if isinstance(level, int):
            return level
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Point the roomagent logger at a file or stderr.

    Safe to call again after a config reload; the previous handlers are
    removed first.
    """
    for old in _handlers:
        logger.removeHandler(old)
        old.close()
    _handlers.clear()

    logger.setLevel(resolve_level(config))

    path = (config.file if config else None) or os.environ.get("ROOMAGENT_LOG")
    handler: logging.Handler = logging.StreamHandler(sys.stderr)
    failure: OSError | None = None
    if path:
        try:
            handler = logging.FileHandler(os.path.expanduser(path), encoding="utf-8")
        except OSError as e:
            failure = e
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    _handlers.append(handler)
    if failure is not None:
        logger.error("Cannot open log file %s: %s", path, failure)


def get_logger(name: str | None = None) -> logging.Logger:
    """The roomagent logger, or its child `roomagent.<name>`."""
    return logger.getChild(name) if name else logger
