"""Operation timing. Logs durations at DEBUG; usable around sync or async blocks."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def measure(operation: str, **context: object) -> Iterator[None]:
    """Time the enclosed block and log `operation took N ms`. Exceptions propagate untouched."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        if context:
            logger.debug("%s took %.1f ms %s", operation, elapsed_ms, context)
        else:
            logger.debug("%s took %.1f ms", operation, elapsed_ms)
