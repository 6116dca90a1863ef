from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger("mixer.retry")


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Purpose: Call fn, retrying on failure with exponential backoff.
    Inputs/Outputs: Input is a zero-argument callable plus retry knobs; returns fn's result.
    Side Effects / State: Sleeps initial_delay * 2**attempt between attempts.
    Dependencies: Uses time.sleep unless a sleep function is injected.
    Failure Modes: Re-raises the last error once max_retries extra attempts are spent;
        exceptions outside retry_on propagate immediately.
    Testing Notes: Inject a recording sleep and assert delays 1, 2, 4.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except retry_on as exc:
            if attempt >= max_retries:
                raise
            delay = initial_delay * (2 ** attempt)
            logger.warning("attempt=%s failed error=%s retry_in=%.2fs", attempt + 1, exc, delay)
            (sleep or time.sleep)(delay)
            attempt += 1
