# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import time
import functools
from typing import Callable


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts (at least one)
    delay: seconds between attempts
    retry_on: exception types to retry; anything else propagates at once
    on_retry: callback(attempt, exception) before each wait

    After the last attempt the last exception is re-raised unchanged, so
    callers keep catching the same error types they would without retry.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            attempts = max(1, retries)
            for attempt in range(1, attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    if attempt == attempts:
                        raise
                    if on_retry:
                        on_retry(attempt, exc)
                    sleep(delay)
        return wrapper
    return decorator
