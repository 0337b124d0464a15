import logging
import os
import sys

import colorlog

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


def _build_handler(stream) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    if stream.isatty():
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s" + LOG_FORMAT,
                datefmt="%Y-%m-%d %H:%M:%S",
                log_colors=LOG_COLORS,
            )
        )
    else:
        # container log collectors get plain lines
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def configure_logging(name: str = "virtual_staging", level: str = None) -> logging.Logger:
    root = logging.getLogger(name)
    root.setLevel((level or os.getenv("LOG_LEVEL", "DEBUG")).upper())
    if not root.handlers:
        root.addHandler(_build_handler(sys.stderr))
        root.propagate = False
    return root


logger = configure_logging()
