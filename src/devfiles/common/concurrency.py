"""
Async coordination primitives for the install pipeline.

Provides:
- CompletionToken: single-fire settle guard shared by concurrent tasks
- join_all: fan-in over N coroutines that fails fast on the first error
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, List, Optional


class TokenState(str, Enum):
    """Lifecycle of a CompletionToken."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CompletionToken:
    """
    Single-fire completion guard.

    The first call to succeed() or fail() settles the token; every later call
    is a no-op and returns False. Tasks check `settled` to discard progress
    once a sibling has already failed.

    Usage:
        token = CompletionToken()
        if token.fail(error):
            await rollback()
    """

    def __init__(self) -> None:
        self._state = TokenState.PENDING
        self._error: Optional[BaseException] = None
        self._result: Any = None

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def settled(self) -> bool:
        return self._state is not TokenState.PENDING

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def result(self) -> Any:
        return self._result

    def succeed(self, result: Any = None) -> bool:
        """Settle as success. Returns True only for the winning call."""
        if self.settled:
            return False
        self._state = TokenState.SUCCEEDED
        self._result = result
        return True

    def fail(self, error: BaseException) -> bool:
        """Settle as failure. Returns True only for the winning call."""
        if self.settled:
            return False
        self._state = TokenState.FAILED
        self._error = error
        return True


async def join_all(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run awaitables concurrently and wait for all of them.

    Fails fast: on the first exception the remaining tasks are cancelled and
    awaited, then the exception is re-raised. Results of cancelled siblings
    are discarded.

    Args:
        *aws: Coroutines or futures to run

    Returns:
        Results in argument order

    Raises:
        The first exception raised by any awaitable
    """
    if not aws:
        return []

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failed = [
        task
        for task in tasks
        if task in done and not task.cancelled() and task.exception() is not None
    ]
    if failed:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        raise failed[0].exception()

    return [task.result() for task in tasks]
