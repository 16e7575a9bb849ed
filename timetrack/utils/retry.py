"""Async retry decorator with exponential back-off and jitter.

Only explicit, user-triggered calls are wrapped (minting a user code).  Sync
traffic is never retried in place: failed mutations go to the operation queue
and failed fetches wait for the next cycle.

```python
@async_retry(max_attempts=4, retriable=is_retryable_http_exc, provider="timetrack-api")
async def generate_user_code(self) -> str:
    ...
```
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Awaitable
from typing import Callable
from typing import ParamSpec
from typing import TypeVar

from timetrack.config import get_settings
from timetrack.metrics import external_api_retry_total
from timetrack.utils.log import log

_T = TypeVar("_T")
_P = ParamSpec("_P")

# Status codes worth another attempt (503 = code space exhausted, retry later)
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def async_retry(
    *,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.25,
    retriable: Callable[[Exception], bool] | None = None,
    provider: str | None = None,
) -> Callable[[Callable[_P, Awaitable[_T]]], Callable[_P, Awaitable[_T]]]:
    """Retry the decorated coroutine function on failure.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first call; ``1`` disables retrying.
    base_delay:
        Sleep before the second attempt, doubled after every failure up to
        *max_delay*.
    jitter:
        Fraction of the delay added or subtracted at random.
    retriable:
        Predicate on the raised exception; everything is retried when omitted.
    provider:
        Label for the ``external_api_retry_total`` counter and log records.
    """

    # Keep failure-path tests fast.
    if get_settings().testing:
        max_attempts = min(max_attempts, 2)
        base_delay = min(base_delay, 0.01)
        max_delay = min(max_delay, 0.05)

    def decorator(fn: Callable[_P, Awaitable[_T]]) -> Callable[_P, Awaitable[_T]]:
        label = provider or fn.__module__

        @functools.wraps(fn)
        async def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _T:
            delay = base_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    if attempt >= max_attempts or (retriable is not None and not retriable(exc)):
                        log.warning("retry-exhausted", provider=label, function=fn.__name__, attempts=attempt, error=str(exc))
                        raise

                    sleep_for = delay * (1 + random.uniform(-jitter, jitter))
                    log.debug("retry", provider=label, function=fn.__name__, attempt=attempt, sleep=sleep_for)
                    external_api_retry_total.labels(label, fn.__name__).inc()
                    await asyncio.sleep(sleep_for)
                    delay = min(delay * 2, max_delay)

            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper

    return decorator


def is_retryable_http_exc(exc: Exception) -> bool:
    """True for transient failures: no status (network/timeout), 429 or 5xx gateway errors."""

    status = getattr(exc, "status_code", None)
    return status is None or status in RETRYABLE_STATUS_CODES


__all__ = [
    "async_retry",
    "is_retryable_http_exc",
]
