"""Testes para a fila de eventos em memória."""

from __future__ import annotations

import pytest

from mtn_notifications.infra.message_queue import InMemoryMessageQueue


class TestInMemoryMessageQueue:
    @pytest.mark.asyncio
    async def test_enqueue_dequeue_fifo(self) -> None:
        queue = InMemoryMessageQueue()
        first = await queue.enqueue({"n": 1})
        await queue.enqueue({"n": 2})

        messages = await queue.dequeue(batch_size=10)

        assert [m.payload["n"] for m in messages] == [1, 2]
        assert messages[0].task_id == first
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_dequeue_respects_batch_size(self) -> None:
        queue = InMemoryMessageQueue()
        for n in range(3):
            await queue.enqueue({"n": n})
        assert len(await queue.dequeue(batch_size=2)) == 2
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_empty_queue(self) -> None:
        assert await InMemoryMessageQueue().dequeue() == []

    @pytest.mark.asyncio
    async def test_nack_is_recorded(self) -> None:
        queue = InMemoryMessageQueue()
        await queue.nack("mem-1", "invalid")
        assert queue.nacked == [("mem-1", "invalid")]
