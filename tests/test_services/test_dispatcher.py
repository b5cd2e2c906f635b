"""Tests for the OutboundDispatcher."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from agentic_marketplace.services.dispatcher import OutboundDispatcher


class FailingPublisher:
    def __init__(self) -> None:
        self.calls = 0

    async def publish(self, event_type, payload) -> None:
        self.calls += 1
        raise ConnectionError("broker unavailable")


class TestDelivery:
    @pytest.mark.asyncio
    async def test_publish_delivers_to_publisher(self, dispatcher, publisher) -> None:
        assert dispatcher.publish("transaction.created", {"transaction_id": "abc"}) is True
        await dispatcher.join()

        assert publisher.events == [("transaction.created", {"transaction_id": "abc"})]
        assert dispatcher.stats.enqueued == 1
        assert dispatcher.stats.delivered == 1

    @pytest.mark.asyncio
    async def test_submit_runs_arbitrary_jobs(self, dispatcher, trust, buyer_id) -> None:
        tx_id = uuid.uuid4()
        assert dispatcher.submit("trust.on_transaction_completed", trust.on_transaction_completed, buyer_id, tx_id)
        await dispatcher.join()

        assert trust.completed == [(buyer_id, tx_id)]

    @pytest.mark.asyncio
    async def test_publish_without_publisher_is_not_queued(self) -> None:
        dispatcher = OutboundDispatcher(publisher=None)
        assert dispatcher.publish("transaction.created", {}) is False
        assert dispatcher.stats.enqueued == 0


class TestFailures:
    @pytest.mark.asyncio
    async def test_failing_publisher_is_counted_not_raised(self) -> None:
        failing = FailingPublisher()
        dispatcher = OutboundDispatcher(failing, workers=1)
        await dispatcher.start()
        try:
            dispatcher.publish("transaction.created", {})
            dispatcher.publish("transaction.completed", {})
            await dispatcher.join()
        finally:
            await dispatcher.stop()

        assert failing.calls == 2
        assert dispatcher.stats.failed == 2
        assert dispatcher.stats.delivered == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, publisher) -> None:
        dispatcher = OutboundDispatcher(publisher, max_queue_size=1)

        assert dispatcher.publish("transaction.created", {}) is True
        assert dispatcher.publish("transaction.completed", {}) is False

        assert dispatcher.stats.to_dict() == {
            "enqueued": 1,
            "delivered": 0,
            "failed": 0,
            "dropped": 1,
        }


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_drains_queued_jobs(self, publisher) -> None:
        dispatcher = OutboundDispatcher(publisher, workers=2)
        for i in range(5):
            dispatcher.publish("transaction.created", {"n": i})

        await dispatcher.start()
        assert dispatcher.running
        await dispatcher.stop(drain=True)

        assert not dispatcher.running
        assert sorted(p["n"] for _, p in publisher.events) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_stop_without_drain_leaves_backlog(self, publisher) -> None:
        started = asyncio.Event()

        async def slow_job() -> None:
            started.set()
            await asyncio.sleep(60)

        dispatcher = OutboundDispatcher(publisher, workers=1)
        await dispatcher.start()
        dispatcher.submit("slow", slow_job)
        dispatcher.publish("transaction.created", {})
        await started.wait()

        await dispatcher.stop(drain=False)

        assert publisher.events == []
        assert dispatcher.stats.delivered == 0

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, publisher) -> None:
        dispatcher = OutboundDispatcher(publisher, workers=2)
        await dispatcher.start()
        workers = list(dispatcher._workers)
        await dispatcher.start()
        assert dispatcher._workers == workers
        await dispatcher.stop()
