# -*- coding: utf-8 -*-
import logging
import sys
from pathlib import Path
from typing import Optional

SUCCESS = 25

FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.addLevelName(SUCCESS, "SUCCESS")
logging.addLevelName(logging.WARNING, "WARN")


class RunLogger(logging.Logger):
    """Logger with a `success` level between INFO and WARNING."""

    def success(self, msg, *args, **kwargs):
        if self.isEnabledFor(SUCCESS):
            self._log(SUCCESS, msg, args, **kwargs)


def make_logger(
    name: str, log_path: Optional[Path] = None, verbose: bool = False, stream=None
) -> RunLogger:
    """Build the logger of one run.

    The logger is not registered with the `logging` manager; it is created here
    and handed to every component of the run explicitly.

    Args:
        name (str): logger name, usually the pipeline name.
        log_path (Path, optional): file to append to. Only the stream handler is
            attached when it is not given.
        verbose (bool): log at DEBUG instead of INFO.
        stream (file, optional): mirror stream, defaults to stdout so the
            scheduler's own log captures the run.

    Returns:
        RunLogger: the configured logger.
    """
    logger = RunLogger(f"oracle_sync.{name}")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    formatter = logging.Formatter(FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(stream or sys.stdout)]
    if log_path is not None:
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def close_logger(logger: logging.Logger):
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
