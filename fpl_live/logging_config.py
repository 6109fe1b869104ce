"""Python logging configuration for the live scoring service.

Polls, timers and cache refreshes all run on their own threads, so the
thread name is part of every line.
"""

import logging
import sys

_NOISY_LOGGERS = ("urllib3", "werkzeug")


def _level_from_env(default: int) -> int:
    from fpl_live.config import load_env

    settings, problems = load_env()
    if problems or "log_level" not in settings.model_fields_set:
        # Bad values are reported by config.validate() at startup
        return default
    return logging.getLevelName(settings.log_level)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the root logger once; ``FPL_LIVE_LOG_LEVEL`` overrides *level*."""
    root = logging.getLogger()
    if root.handlers:
        return  # Already configured (or pytest's caplog is installed)

    level = _level_from_env(level)
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger, ensuring logging is configured."""
    setup_logging()
    return logging.getLogger(name)
