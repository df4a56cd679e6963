"""Logging helpers shared across mridefacer modules."""

from __future__ import annotations

import logging
import sys
from typing import Optional

IMPORTANT = 25
VERBOSE = 15

_COLORS = {
    logging.DEBUG: '\033[36m',
    VERBOSE: '\033[34m',
    logging.INFO: '\033[0m',
    IMPORTANT: '\033[32m',
    logging.WARNING: '\033[33m',
    logging.ERROR: '\033[31m',
    logging.CRITICAL: '\033[1;31m',
}
_RESET = '\033[0m'
_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'
_DATEFMT = '%y%m%d-%H:%M:%S'

logging.addLevelName(IMPORTANT, 'IMPORTANT')
logging.addLevelName(VERBOSE, 'VERBOSE')


class ColorFormatter(logging.Formatter):
    """Prefix each record with an ANSI colour chosen by its level."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = _COLORS.get(record.levelno)
        if color is None:
            return message
        return f'{color}{message}{_RESET}'


def get_logger(name: str) -> logging.Logger:
    """Return a logger in the ``mridefacer`` namespace."""
    if name != 'mridefacer' and not name.startswith('mridefacer.'):
        name = f'mridefacer.{name}'
    return logging.getLogger(name)


def setup_logging(
    verbose_count: int = 0,
    color: Optional[bool] = None,
    stream=None,
) -> int:
    """
    Configure console logging for the ``mridefacer`` and nipype loggers.

    Parameters
    ----------
    verbose_count : int
        Number of ``-v`` flags; each one lowers the threshold by 5,
        starting from ``IMPORTANT`` (25) down to ``DEBUG``.
    color : bool | None
        Colour records by level. ``None`` enables colour only when the
        stream is a terminal.
    stream : file-like, optional
        Destination of log records (default: ``sys.stderr``).

    Returns
    -------
    int
        The effective log level.
    """
    from nipype import logging as nlogging

    stream = stream or sys.stderr
    if color is None:
        color = hasattr(stream, 'isatty') and stream.isatty()

    log_level = int(max(IMPORTANT - 5 * verbose_count, logging.DEBUG))

    handler = logging.StreamHandler(stream)
    formatter_cls = ColorFormatter if color else logging.Formatter
    handler.setFormatter(formatter_cls(_FORMAT, datefmt=_DATEFMT))

    logger = logging.getLogger('mridefacer')
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False

    for name in ('nipype.workflow', 'nipype.interface', 'nipype.utils'):
        nlogging.getLogger(name).setLevel(log_level)

    return log_level
