"""
rkeplan/utils/async_retry.py

Provides a decorator to retry an async function multiple times upon failure,
and the exponential backoff schedule shared with the controller's work queue.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Tuple, Type
from typing_extensions import ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    factor: float = 2.0,
) -> float:
    """Return the delay before retry number `attempt` (1-based).

    The schedule is base_delay * factor ** (attempt - 1), capped at max_delay.

    Args:
        attempt (int): Which retry this is; values below 1 are treated as 1.
        base_delay (float): Delay for the first retry, in seconds.
        max_delay (float): Upper bound for any delay, in seconds.
        factor (float, optional): Growth factor per attempt. Defaults to 2.0.

    Returns:
        float: The delay in seconds.
    """
    exponent = max(attempt, 1) - 1
    # Cap the exponent so huge failure counts cannot overflow a float.
    if exponent > 64:
        return max_delay
    return min(base_delay * (factor**exponent), max_delay)


def async_retry(
    retries: int = 3,
    delay: float = 1.0,
    noisy: bool = False,
    backoff: float = 1.0,
    max_delay: float = 60.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]
]:
    """Decorates an async function to retry upon failure.

    The decorated function will be attempted up to `retries` times. The wait
    before attempt n+1 is backoff_delay(n, delay, max_delay, backoff), so the
    default backoff of 1.0 keeps a constant `delay`. Only exceptions matching
    `retry_on` are retried; anything else propagates immediately. If `noisy`
    is True, logs warnings on each failure and an error on the final failure.

    Args:
        retries (int, optional):
            Maximum number of total attempts (not just failures). Defaults to 3.
        delay (float, optional):
            Delay in seconds before the first retry. Defaults to 1.0.
        noisy (bool, optional):
            If True, logs a warning on each failure and an error if all attempts fail.
            Defaults to False.
        backoff (float, optional):
            Multiplier applied to the delay after each failure. Defaults to 1.0.
        max_delay (float, optional):
            Upper bound for any single delay. Defaults to 60.0.
        retry_on (Tuple[Type[BaseException], ...], optional):
            Exception types that trigger a retry. Defaults to (Exception,).

    Returns:
        A decorator that, when applied to an async function, returns a wrapped
        version that retries on exceptions.
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, R]]
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            async def attempt(remaining: int, attempt_number: int) -> R:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if noisy:
                        logger.warning(
                            "Attempt %d/%d for function %r failed. Error: %s",
                            attempt_number,
                            retries,
                            func.__qualname__,
                            exc,
                        )
                    if remaining > 1:
                        await asyncio.sleep(
                            backoff_delay(attempt_number, delay, max_delay, backoff)
                        )
                        return await attempt(remaining - 1, attempt_number + 1)

                    if noisy:
                        logger.error(
                            "All %d attempts failed for function %r",
                            retries,
                            func.__qualname__,
                        )
                    raise

            return await attempt(max(retries, 1), 1)

        return wrapper

    return decorator
