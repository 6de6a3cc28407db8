"""
conftest.py
===========
Session-wide pytest setup.

Marks
-----
slow
    Full block pivot runs at larger taxon counts.  Skip them with
    ``pytest -m "not slow"``.  Declaring the mark here keeps pytest from
    warning about it and lists it under ``pytest --markers``.

Warnings
--------
numba may emit NumbaPerformanceWarning while compiling the kernels.  It
concerns code generation only, so it is ignored for the test session.
"""

import warnings

from numba.core.errors import NumbaPerformanceWarning


def pytest_configure(config):
    """Register marks and warning filters before any test module is imported."""
    config.addinivalue_line(
        "markers",
        "slow: full solver runs at larger n (deselect with -m 'not slow')",
    )
    warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)


def pytest_unconfigure(config):
    """Drop the session warning filters."""
    warnings.resetwarnings()
