"""Process-wide logging setup for applications embedding the client.

Library modules only ever call ``logging.getLogger(__name__)``; attaching
handlers is the application's decision, made once with :func:`init_logging`
and undone with :func:`teardown_logging`.
"""

from __future__ import annotations

import logging

LOGGER_NAME = "lighter_transport"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: logging.Handler | None = None


def init_logging(
    level: int | str = logging.INFO,
    *,
    fmt: str = DEFAULT_FORMAT,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """Attach a single handler to the package logger.

    Calling it again replaces the previously installed handler.

    Args:
        level: Logger level, as a number or a name such as ``"DEBUG"``
        fmt: Format string for the default stream handler
        handler: Use this handler instead of a stderr stream handler

    Returns:
        The installed handler
    """
    global _handler

    teardown_logging()
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)

    installed = handler or logging.StreamHandler()
    if handler is None:
        installed.setFormatter(logging.Formatter(fmt))
    logger.addHandler(installed)
    _handler = installed
    return installed


def teardown_logging() -> None:
    """Remove the handler installed by :func:`init_logging`, if any."""
    global _handler

    if _handler is None:
        return
    logger = logging.getLogger(LOGGER_NAME)
    logger.removeHandler(_handler)
    _handler.close()
    logger.setLevel(logging.NOTSET)
    _handler = None
