"""
chainbasis/logging_config.py

Root logging setup. Library modules only ever call logging.getLogger(__name__);
applications (or scripts) call setup_logging() once at startup.
"""

import logging
import sys

NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "urllib3",
    "web3",
    "web3.providers",
    "web3.RequestManager",
    "sqlalchemy.engine",
]


def setup_logging(level=None) -> logging.Logger:
    """
    Configure the root logger with a single stdout handler and return the
    package logger. `level` defaults to LOG_LEVEL from the environment.
    """
    if level is None:
        from chainbasis.config import LOG_LEVEL
        level = LOG_LEVEL

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)

    app_logger = logging.getLogger("chainbasis")
    app_logger.setLevel(level)
    return app_logger
