"""CLI module for Cookie Sentinel.

This package provides the command-line interface for registering domains,
running scans and operating the automatic scan scheduler.
"""

from .main import CLIState, ExitCode, app

__all__ = [
    'CLIState',
    'ExitCode',
    'app',
]
