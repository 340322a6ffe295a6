from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable


logger = logging.getLogger(__name__)


def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> Any:
    """Call `func`, retrying with exponential backoff and jitter. Re-raises the last error."""
    name = getattr(func, "__name__", "call")
    attempts = max(1, int(max_retries))
    for attempt in range(attempts):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if attempt == attempts - 1:
                logger.error(f"{name} failed after {attempts} attempts: {e}")
                raise

            delay = min(base_delay * (2 ** attempt) + random.uniform(0, 1), max_delay)
            logger.warning(f"{name} attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s")
            sleep(delay)
