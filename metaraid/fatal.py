"""Logging a fatal error and ending the process."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import NoReturn

log = logging.getLogger(__name__)


def die(error: BaseException, message: str | None = None) -> NoReturn:
    """Log the error and exit with status 1."""
    if message is None:
        log.error("%s", error)
    else:
        log.error("%s error=%s", message, error)
    sys.exit(1)


@contextmanager
def fatal_on_error(message: str | None = None) -> Iterator[None]:
    """Turn any exception raised in the block into a logged exit."""
    try:
        yield
    except Exception as error:  # noqa: BLE001
        die(error, message)