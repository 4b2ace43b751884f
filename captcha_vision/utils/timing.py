from __future__ import annotations

import time
from contextlib import contextmanager
from loguru import logger


def elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000


@contextmanager
def timed(label: str):
    t0 = time.perf_counter()
    try:
        yield
    finally:
        logger.info("{} took {:.2f}ms", label, elapsed_ms(t0))
