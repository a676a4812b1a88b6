from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from .exceptions import TLSBootstrapError


@contextmanager
def stage(description: str) -> Generator[None, Any, None]:
    """
    Prefix any :exc:`TLSBootstrapError` raised within the block with a description of
    the current build stage.

    The exception type is preserved and the original exception is chained as the
    cause.
    """
    try:
        yield
    except TLSBootstrapError as exc:
        raise type(exc)(f"while {description}: {exc}") from exc


def add_years(moment: datetime, years: int) -> datetime:
    """Add calendar years to a datetime, moving Feb 29 to Feb 28 when necessary."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)
