"""Async utilities for bridging blocking I/O into the sync event loop."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The remote client is built on ``requests`` and therefore blocks; the
    sync queue awaits it through this wrapper so timers and listeners keep
    running while a request is in flight.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        ack = await run_sync(client.sync_mutation, mutation, version)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
