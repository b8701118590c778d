"""Pool de workers asyncio que consome a fila de temporizadores."""

from __future__ import annotations

import asyncio
import contextlib

from mtn_notifications.application.pipeline import DeliveryPipeline
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


class DeliveryWorkerPool:
    """N workers; cada um executa no máximo uma tentativa por vez.

    Sem trabalho vencido, o worker dorme até o próximo ``ready_at`` (limitado
    a ``idle_poll_seconds``) ou até o pipeline sinalizar nova entrada.
    Uma tarefa extra chama ``pipeline.sweep()`` a cada ``sweep_interval_seconds``.
    """

    def __init__(
        self,
        pipeline: DeliveryPipeline,
        concurrency: int = 4,
        idle_poll_seconds: float = 1.0,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency deve ser >= 1")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds deve ser > 0")
        self._pipeline = pipeline
        self._concurrency = concurrency
        self._idle_poll_seconds = idle_poll_seconds
        self._sweep_interval_seconds = sweep_interval_seconds
        self._tasks: list[asyncio.Task[None]] = []
        self._wakeup: asyncio.Event | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def start(self) -> None:
        if self._tasks:
            return
        self._stopping = False
        self._wakeup = asyncio.Event()
        self._pipeline.add_wakeup_listener(self._wake)
        self._tasks = [
            asyncio.create_task(self._run(i), name=f"delivery-worker-{i}")
            for i in range(self._concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._housekeeping(), name="delivery-housekeeping"))
        logger.info("worker_pool_started", extra={"concurrency": self._concurrency})

    async def stop(self) -> None:
        self._stopping = True
        self._wake()
        self._pipeline.remove_wakeup_listener(self._wake)
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info("worker_pool_stopped")

    def _idle_timeout(self) -> float:
        next_ready = self._pipeline.next_ready_at()
        if next_ready is None:
            return self._idle_poll_seconds
        wait = (next_ready - self._pipeline.clock()).total_seconds()
        return min(max(wait, 0.0), self._idle_poll_seconds)

    async def _run(self, worker_id: int) -> None:
        assert self._wakeup is not None
        while not self._stopping:
            try:
                processed = await self._pipeline.process_due(limit=1)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "worker_iteration_failed",
                    extra={"worker_id": worker_id, "error_type": type(exc).__name__},
                )
                processed = []
            if processed:
                continue

            self._wakeup.clear()
            timeout = self._idle_timeout()
            if timeout <= 0:
                continue
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)

    async def _housekeeping(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self._sweep_interval_seconds)
            try:
                self._pipeline.sweep()
            except Exception as exc:  # noqa: BLE001
                logger.error("pipeline_sweep_failed", extra={"error_type": type(exc).__name__})
