from __future__ import annotations

import logging
import threading
from typing import Any, Callable


logger = logging.getLogger(__name__)


def spawn_job(fn: Callable[[], Any], name: str) -> threading.Thread:
    """Run a scheduled job on its own daemon thread so the scheduler loop never blocks."""

    def _target() -> None:
        try:
            fn()
        except Exception as e:
            logger.error(f"Job '{name}' crashed: {e}", exc_info=True)

    t = threading.Thread(target=_target, name=name, daemon=True)
    t.start()
    return t
