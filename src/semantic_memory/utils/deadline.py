"""Caller-supplied deadlines for read operations."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from ..errors import DeadlineExceededError, ValidationError

T = TypeVar("T")


async def run_with_deadline(awaitable: Awaitable[T], deadline: float | None, operation: str) -> T:
    """
    Await *awaitable*, raising DeadlineExceededError after *deadline* seconds.

    The inner task is cancelled on expiry, so no partial result escapes.
    ``deadline=None`` waits indefinitely.
    """
    if deadline is None:
        return await awaitable
    if deadline <= 0:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise ValidationError(f"deadline must be positive, got {deadline}")
    try:
        return await asyncio.wait_for(awaitable, timeout=deadline)
    except TimeoutError as e:
        raise DeadlineExceededError(f"{operation} exceeded deadline of {deadline}s") from e
