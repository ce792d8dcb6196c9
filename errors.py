# errors.py
"""
Fatal error handling for layout optimization.

Core modules never exit the process. Unrecoverable conditions (for example
failing to allocate a layout's score buffers) raise FatalError, and the
command-line driver wraps its work in fatal_error_handler(), which reports
the message, restores the terminal cursor and exits non-zero.
"""

import sys
from contextlib import contextmanager

SHOW_CURSOR = "\033[?25h"


class FatalError(Exception):
    """Unrecoverable error; handled only at the top level."""


def error(message: str) -> None:
    """Raise a FatalError carrying the given message."""
    raise FatalError(message)


def report_fatal(message: str, exit_code: int = 1) -> None:
    """Restore cursor visibility, print the error to stderr and exit."""
    sys.stdout.write(SHOW_CURSOR)
    sys.stdout.flush()
    print(f"ERROR: {message}", file=sys.stderr)
    sys.exit(exit_code)


@contextmanager
def fatal_error_handler():
    """Turn any FatalError raised inside the block into process exit."""
    try:
        yield
    except FatalError as e:
        report_fatal(str(e))
