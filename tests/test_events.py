import asyncio

import pytest

from wifi_telescope.scope.events import (
    CommandFailed,
    ConnectionState,
    Disconnected,
    NotificationHub,
    SessionStatus,
    StatusUpdated,
)


def test_handlers_receive_notifications_in_order():
    hub = NotificationHub()
    received = []
    hub.subscribe(received.append)

    hub.emit(Disconnected(1))
    hub.emit(CommandFailed("/v1/general/park", "timeout", 1))

    assert received == [Disconnected(1), CommandFailed("/v1/general/park", "timeout", 1)]


def test_unsubscribe_stops_delivery():
    hub = NotificationHub()
    received = []
    unsubscribe = hub.subscribe(received.append)
    assert hub.subscriber_count == 1

    unsubscribe()
    unsubscribe()
    hub.emit(Disconnected(1))

    assert received == []
    assert hub.subscriber_count == 0


def test_failing_handler_does_not_block_others():
    hub = NotificationHub()
    received = []

    def broken(notification):
        raise RuntimeError("boom")

    hub.subscribe(broken)
    hub.subscribe(received.append)
    hub.emit(Disconnected(2))

    assert received == [Disconnected(2)]


@pytest.mark.asyncio
async def test_coroutine_handlers_are_scheduled():
    hub = NotificationHub()
    received = []

    async def handler(notification):
        received.append(notification)

    hub.subscribe(handler)
    hub.emit(Disconnected(1))
    hub.emit(Disconnected(2))
    await asyncio.sleep(0)

    assert received == [Disconnected(1), Disconnected(2)]


@pytest.mark.asyncio
async def test_listen_collects_into_queue():
    hub = NotificationHub()
    status = SessionStatus(label="Ready", state=ConnectionState.CONNECTED, generation=4)

    with hub.listen() as queue:
        hub.emit(StatusUpdated(status))
        notification = await asyncio.wait_for(queue.get(), timeout=1.0)
    hub.emit(Disconnected(4))

    assert notification.label == "Ready"
    assert notification.generation == 4
    assert queue.empty()
    assert hub.subscriber_count == 0


def test_status_as_dict_uses_plain_values():
    status = SessionStatus(label="Parking", state=ConnectionState.CONNECTED, host="10.0.0.1", port=8082)
    assert status.as_dict() == {
        "label": "Parking",
        "state": "connected",
        "host": "10.0.0.1",
        "port": 8082,
        "last_error": None,
        "generation": 0,
    }
