"""Async helpers: thread offloading for blocking I/O and bounded waits."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from ..errors import RemoteTimeoutError

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used for file I/O in the local storages and the directory-backed
    remote store.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def with_timeout(
    awaitable: Awaitable[T], seconds: float | None, what: str
) -> T:
    """Await *awaitable*, giving up after *seconds*.

    Args:
        awaitable: The operation to wait for.
        seconds: Timeout; ``None`` waits forever.
        what: Short description used in the error message.

    Raises:
        RemoteTimeoutError: If the timeout elapses.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %ss", what, seconds)
        raise RemoteTimeoutError(
            f"{what} timed out after {seconds}s"
        ) from None


async def maybe_await(value: Any) -> Any:
    """Return *value*, awaiting it first if it is awaitable.

    Lets callbacks be either plain functions or coroutine functions.
    """
    if inspect.isawaitable(value):
        return await value
    return value
