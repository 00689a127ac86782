# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/utils/retry.py

import functools
import logging
import time
from typing import Callable, Optional

log = logging.getLogger("kubeboot")


class RetryError(RuntimeError):
    """Every attempt failed; the last failure is chained as __cause__."""


def backoff_delay(attempt: int, base: float, cap: Optional[float] = None) -> float:
    """
    Seconds to wait after the 1-based *attempt* failed: base, 2*base,
    4*base, ... never more than *cap*.
    """
    delay = base * 2 ** max(attempt - 1, 0)
    return delay if cap is None else min(delay, cap)


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    exponential: bool = False,
    max_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator: call the wrapped function up to *retries* times while it
    raises one of *retry_on*. Anything else propagates on the first try.

    *on_retry(attempt, exc)* sees every retryable failure, including the
    last one. With *exponential* the wait doubles from *delay* up to
    *max_delay*.
    """

    def _wait(attempt: int) -> float:
        return backoff_delay(attempt, delay, max_delay) if exponential else delay

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt >= retries:
                        raise RetryError(f"{fn.__name__} gave up after {attempt} attempts") from exc
                    pause = _wait(attempt)
                    log.debug("%s failed (%s), retrying in %.1fs", fn.__name__, exc, pause)
                    sleep(pause)
        return wrapper
    return decorator
