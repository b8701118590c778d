"""Context manager for latency instrumentation."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator

from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


@contextlib.contextmanager
def timed(component: str, **fields: object) -> Generator[None, None, None]:
    """Measure and log elapsed time of a pipeline stage.

    Usage:
        with timed("dispatch", channel="EMAIL"):
            await transport.transmit(...)

    Logs a structured ``component_latency`` entry with ``component``,
    ``elapsed_ms`` and any extra ``fields`` (never PII).
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "component_latency",
            extra={
                "component": component,
                "elapsed_ms": round(elapsed_ms, 2),
                **fields,
            },
        )
