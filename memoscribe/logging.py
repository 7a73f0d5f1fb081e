"""
memoscribe.logging - Package logger and verbosity setup.

memoscribe runs inside a host application, so configuration touches only
the package logger and the recognizer libraries' loggers. When the host
has already configured root logging, records propagate there instead of
getting a handler of their own.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("memoscribe")

# chatty at INFO/DEBUG while models load and audio is resampled
RECOGNIZER_LOGGERS = ("faster_whisper", "huggingface_hub", "numba")

LOG_FORMAT = "%(levelname)s: %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Set memoscribe's log level and quiet the recognizer libraries.

    Safe to call more than once; at most one handler is ever attached.

    Args:
        verbose: If True, log memoscribe at DEBUG and recognizer libraries
            at INFO; otherwise both at WARNING
    """
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    for name in RECOGNIZER_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if verbose else logging.WARNING)
