"""
Bounded poll-until loop used for broker readiness, agent presence and
action status checks.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Check = Callable[[], Union[bool, Awaitable[bool]]]


async def poll_until(
    check: Check,
    interval: float,
    max_attempts: int,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "condition",
) -> bool:
    """Evaluate check until it is truthy, at most max_attempts times.

    max_attempts <= 0 means a single evaluation. There is no sleep after the
    final failed evaluation. Exceptions raised by check propagate.
    """
    attempts = max(max_attempts, 1)
    for attempt in range(1, attempts + 1):
        result = check()
        if inspect.isawaitable(result):
            result = await result
        if result:
            logger.debug("%s held on attempt %d/%d", description, attempt, attempts)
            return True
        if attempt < attempts:
            await sleep(interval)
    logger.debug("%s did not hold after %d attempt(s)", description, attempts)
    return False
