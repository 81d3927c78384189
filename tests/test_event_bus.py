import pytest
from unittest.mock import MagicMock

from utils.event_bus import EventBus


@pytest.mark.asyncio
async def test_publish_delivers_in_order():
    bus = EventBus()
    seen = []
    bus.subscribe("topic", seen.append)

    for i in range(3):
        bus.publish("topic", i)
    await bus.drain()

    assert seen == [0, 1, 2]
    await bus.close()


@pytest.mark.asyncio
async def test_async_handlers_are_awaited():
    bus = EventBus()
    seen = []

    async def handler(payload):
        seen.append(payload)

    bus.subscribe("topic", handler)
    bus.publish("topic", "x")
    await bus.close()

    assert seen == ["x"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    logger = MagicMock()
    bus = EventBus(logger=logger)
    seen = []

    def broken(_):
        raise RuntimeError("boom")

    bus.subscribe("topic", broken)
    bus.subscribe("topic", seen.append)
    bus.publish("topic", 1)
    bus.publish("topic", 2)
    await bus.close()

    assert seen == [1, 2]
    assert logger.exception.call_count == 2


@pytest.mark.asyncio
async def test_unsubscribed_topic_is_ignored():
    bus = EventBus()
    bus.publish("nobody-listens", 1)
    await bus.close()


@pytest.mark.asyncio
async def test_close_without_publish():
    await EventBus().close()
