"""
First-settled-wins race between an awaitable and a fixed deadline.

This is a bounded wait, not cancellation: when the deadline wins, the underlying
call keeps running and its eventual result (or error) is consumed and dropped.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Settled(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.error is None


def _drop_late_result(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Late result after deadline discarded: %s", exc)
    else:
        logger.debug("Late result after deadline discarded")


async def first_settled(aw: Awaitable[T], timeout: float) -> Settled[T]:
    """
    Await `aw` for at most `timeout` seconds.

    Never raises for failures of `aw`; they are returned in `Settled.error`.
    Cancellation of the caller is propagated (and forwarded to `aw`).
    """
    task = asyncio.ensure_future(aw)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if not done:
        task.add_done_callback(_drop_late_result)
        return Settled(timed_out=True)
    if task.cancelled():
        return Settled(error=asyncio.CancelledError())
    exc = task.exception()
    if exc is not None:
        return Settled(error=exc)
    return Settled(value=task.result())
