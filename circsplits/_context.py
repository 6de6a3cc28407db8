"""
_context.py
===========
Context managers for the logging and warning state of circsplits.

  suppress_logger(name, level)   raise one logger's threshold
  quiet(level)                   raise the threshold of the whole package
  verbose(level, stream)         stream package records to a handler, e.g.
                                 to watch the pivots of a single run
  suppress_warnings(category)    ignore a warning category

Each manager puts back exactly what it changed when the block exits,
normally or by exception.  Solver settings are not managed here: they
travel with each call as a :class:`~circsplits.BlockPivotParams`, so
threads solving different problems never see each other's configuration.
"""

import logging
import sys
import warnings
from contextlib import contextmanager
from typing import Optional, TextIO, Type


PACKAGE_LOGGER = "circsplits"


# ============================================================================ #
# Logger thresholds
# ============================================================================ #


@contextmanager
def suppress_logger(logger_name: str, level: int = logging.CRITICAL):
    """
    Set the threshold of one logger for the duration of a block.

    Parameters
    ----------
    logger_name : str
        Dotted logger name, e.g. 'circsplits._logging'.
    level : int, default logging.CRITICAL
        Threshold inside the block.

    Examples
    --------
    >>> with suppress_logger('circsplits._logging', logging.WARNING):
    ...     result = block_pivot(d, n)

    Managers can be nested; each restores the level it found.
    """
    target = logging.getLogger(logger_name)
    saved = target.level
    target.setLevel(level)
    try:
        yield
    finally:
        target.setLevel(saved)


@contextmanager
def quiet(level: int = logging.CRITICAL):
    """
    Silence circsplits below *level*.

    Module loggers have no level of their own and inherit it from the
    ``circsplits`` parent, so one call covers every module.

    Examples
    --------
    >>> with quiet():
    ...     splits = circular_split_weights(D)

    Keep the pivot-cap warning but drop the INFO summaries:

    >>> with quiet(logging.WARNING):
    ...     splits = circular_split_weights(D)
    """
    with suppress_logger(PACKAGE_LOGGER, level):
        yield


@contextmanager
def verbose(level: int = logging.DEBUG, stream: Optional[TextIO] = None):
    """
    Print circsplits records at *level* and above to *stream*.

    A handler is attached to the ``circsplits`` logger for the duration of
    the block and removed afterwards, together with the previous level.

    Parameters
    ----------
    level : int, default logging.DEBUG
        DEBUG shows every pivot and inner solve; INFO only run summaries.
    stream : file-like, optional
        Destination; ``sys.stderr`` if omitted.

    Examples
    --------
    >>> with verbose():
    ...     result = block_pivot(d, n)
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(name)s %(levelname)s: %(message)s"))
    package = logging.getLogger(PACKAGE_LOGGER)
    package.addHandler(handler)
    try:
        with suppress_logger(PACKAGE_LOGGER, level):
            yield
    finally:
        package.removeHandler(handler)


# ============================================================================ #
# Warnings
# ============================================================================ #


@contextmanager
def suppress_warnings(category: Optional[Type[Warning]] = None):
    """
    Ignore warnings of *category* (all warnings if None) inside a block.

    The filter list is saved and restored with ``warnings.catch_warnings``.

    Examples
    --------
    >>> from numba.core.errors import NumbaPerformanceWarning
    >>> with suppress_warnings(NumbaPerformanceWarning):
    ...     result = block_pivot(d, n)
    """
    with warnings.catch_warnings():
        if category is not None:
            warnings.filterwarnings("ignore", category=category)
        else:
            warnings.simplefilter("ignore")
        yield
