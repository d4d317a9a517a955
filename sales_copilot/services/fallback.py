"""
Ordered fallback and timeout helpers for external calls
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from sales_copilot.utils.metrics import external_call_counter

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Attempt:
    """One strategy in an ordered fallback chain"""
    name: str
    call: Callable[[], Awaitable[Optional[T]]]


async def first_success(
    attempts: Sequence[Attempt],
    default: T,
    *,
    timeout: Optional[float] = None,
    label: str = "attempt",
) -> T:
    """
    Run attempts strictly in order and return the first usable result.

    A result is usable when it is truthy. Exceptions and timeouts are logged
    and treated as a miss. When every attempt misses, `default` is returned.
    """
    for attempt in attempts:
        try:
            if timeout:
                result = await asyncio.wait_for(attempt.call(), timeout=timeout)
            else:
                result = await attempt.call()
        except asyncio.TimeoutError:
            logger.warning(f"{label} timed out", strategy=attempt.name, timeout=timeout)
            external_call_counter.labels(call=label, strategy=attempt.name, outcome="timeout").inc()
            continue
        except Exception as e:
            logger.warning(f"{label} failed", strategy=attempt.name, error=str(e))
            external_call_counter.labels(call=label, strategy=attempt.name, outcome="error").inc()
            continue

        if result:
            external_call_counter.labels(call=label, strategy=attempt.name, outcome="ok").inc()
            return result

        logger.info(f"{label} returned nothing", strategy=attempt.name)
        external_call_counter.labels(call=label, strategy=attempt.name, outcome="empty").inc()

    return default


async def bounded(
    awaitable: Awaitable[T],
    *,
    timeout: float,
    default: T,
    label: str,
) -> T:
    """Await with a timeout, degrading to `default` on timeout or error"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{label} timed out", timeout=timeout)
        external_call_counter.labels(call=label, strategy="single", outcome="timeout").inc()
    except Exception as e:
        logger.error(f"{label} failed", error=str(e), exc_info=True)
        external_call_counter.labels(call=label, strategy="single", outcome="error").inc()
    return default
