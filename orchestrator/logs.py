"""File loggers shared by the orchestrator components."""

import logging
import os


def build_file_logger(name: str, log_dir: str, filename: str) -> logging.Logger:
    """Return a non-propagating logger that appends to ``log_dir/filename``.

    Calling it again with the same name and file reuses the existing handler.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    log_path = os.path.abspath(os.path.join(log_dir, filename))
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path:
            return logger

    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def close_file_logger(logger: logging.Logger) -> None:
    """Detach and close every file handler of ``logger``."""
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
