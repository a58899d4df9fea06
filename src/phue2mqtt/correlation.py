"""
Correlation ids for tracing one unit of work through the bridge.

A unit of work is one inbound MQTT command, one poll tick or one full publish
pass. The id lives in a ContextVar so concurrent asyncio tasks never see each
other's ids, and every log line emitted while the unit runs carries it.
"""

from __future__ import annotations

import contextvars
import functools
import uuid
from collections.abc import Awaitable, Callable, Generator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

__all__ = [
    "correlated",
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

P = ParamSpec("P")
R = TypeVar("R")

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "phue2mqtt_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a fresh id (UUID4 hex, no dashes)."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    auto_generate: bool = True,
) -> Generator[str | None]:
    """
    Scope a correlation id to a block, restoring the previous one on exit.

    Args:
        correlation_id: Id to use; generated when None and auto_generate is set
        auto_generate: Generate an id when none is given

    Yields:
        The id active inside the block
    """
    token = _correlation_id.set(
        correlation_id if correlation_id is not None or not auto_generate else generate_correlation_id(),
    )
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id() -> str:
    """Return the current id, creating one for this context if none is set."""
    current_id = _correlation_id.get()
    if current_id is None:
        current_id = generate_correlation_id()
        _correlation_id.set(current_id)
    return current_id


def correlated(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Run each call of a coroutine function under its own correlation id."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        with correlation_context():
            return await func(*args, **kwargs)

    return wrapper
