"""File loggers for the nodes of a cluster."""

from __future__ import annotations

import logging
import os
from pathlib import Path

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}

_FORMAT = "%(asctime)s\t%(levelname)s\t%(name)s\t%(filename)s:%(lineno)d\t%(message)s"


def new_file_logger(level: str, prefix: int, directory: str | Path | None = None) -> logging.Logger:
    """Return a logger writing to ``logs<prefix>.csv``, which must already exist and is emptied.

    An unknown level is reported and replaced by the warning level.
    """
    lvl = _LEVELS.get(level.strip().lower())
    if lvl is None:
        logging.getLogger(__name__).warning("cannot parse log level %s", level)
        lvl = logging.WARNING

    path = Path(directory or ".") / f"logs{prefix}.csv"
    os.truncate(path, 0)

    logger = logging.getLogger(f"shardbank.nodes.{path.resolve()}")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(lvl)
    logger.propagate = False
    return logger