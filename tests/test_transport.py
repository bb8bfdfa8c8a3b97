"""BusConnection behaviour with the Socket.IO client replaced by a stub."""

import logging

import pytest
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from pcp_controller import ConnectionError
from pcp_controller.models.envelope import SERVER_IDENTITY, MessageType
from pcp_controller.transport.socketio import BusConnection, client_identity

from conftest import AGENT1, fast_settings


class StubSio:
    """Socket.IO client stand-in. Answers associate_request through the connection."""

    def __init__(self, connection, fail_connects=0, associate=True):
        self.connection = connection
        self.fail_connects = fail_connects
        self.associate = associate
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.emitted = []

    async def connect(self, url, **kwargs):
        self.connect_calls += 1
        if self.connect_calls <= self.fail_connects:
            raise SocketIOConnectionError("connection refused")
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False

    async def emit(self, event, data):
        self.emitted.append((event, data))
        if event == MessageType.ASSOCIATE_REQUEST.value and self.associate is not None:
            self.connection._receive({
                "id": "assoc-1",
                "sender": SERVER_IDENTITY,
                "message_type": MessageType.ASSOCIATE_RESPONSE.value,
                "in_reply_to": data["id"],
                "data": {"id": data["sender"], "success": self.associate},
            })


def make_connection(retries=3, **stub_kwargs):
    connection = BusConnection("wss://broker.example.com:8142", retries=retries,
                               attempt_timeout=0.1, association_timeout=0.1)
    stubs = []

    def factory():
        stub = StubSio(connection, **stub_kwargs)
        stubs.append(stub)
        return stub

    connection._make_client = factory
    return connection, stubs


def test_client_identity():
    assert client_identity("pcp-controller", "Host.Example.COM") == "pcp://host.example.com/pcp-controller"


@pytest.mark.asyncio
async def test_connect_and_associate():
    connection, stubs = make_connection()
    await connection.connect()
    assert connection.connected
    event, wire = stubs[0].emitted[0]
    assert event == MessageType.ASSOCIATE_REQUEST.value
    assert wire["targets"] == [SERVER_IDENTITY]
    assert wire["sender"] == connection.identity
    await connection.close()


@pytest.mark.asyncio
async def test_connect_retries_then_succeeds():
    connection, stubs = make_connection(retries=3)
    # each attempt gets a fresh client; fail the first two
    attempts = {"n": 0}
    original = connection._make_client

    def flaky():
        attempts["n"] += 1
        stub = original()
        stub.fail_connects = 1 if attempts["n"] < 3 else 0
        return stub

    connection._make_client = flaky
    await connection.connect()
    assert connection.connected
    assert len(stubs) == 3
    await connection.close()


@pytest.mark.asyncio
async def test_connect_gives_up_after_retries():
    connection, stubs = make_connection(retries=3, fail_connects=1)
    with pytest.raises(ConnectionError) as exc:
        await connection.connect()
    assert exc.value.details["attempts"] == 3
    assert len(stubs) == 3
    assert not connection.connected


@pytest.mark.asyncio
async def test_refused_association_is_connection_error():
    connection, stubs = make_connection(associate=False)
    with pytest.raises(ConnectionError):
        await connection.connect()
    assert stubs[0].disconnect_calls == 1


@pytest.mark.asyncio
async def test_missing_association_times_out():
    connection, stubs = make_connection(associate=None)
    with pytest.raises(ConnectionError):
        await connection.connect()
    assert stubs[0].disconnect_calls == 1


@pytest.mark.asyncio
async def test_send_requires_connection():
    from pcp_controller import build_envelope

    connection, _ = make_connection()
    envelope = build_envelope(MessageType.INVENTORY_REQUEST, [SERVER_IDENTITY], {"query": ["*"]}, ttl=1)
    with pytest.raises(ConnectionError):
        await connection.send(envelope)


@pytest.mark.asyncio
async def test_send_stamps_sender():
    from pcp_controller import build_envelope

    connection, stubs = make_connection()
    await connection.connect()
    envelope = build_envelope(MessageType.INVENTORY_REQUEST, [SERVER_IDENTITY], {"query": ["*"]}, ttl=1)
    await connection.send(envelope)
    event, wire = stubs[0].emitted[-1]
    assert event == MessageType.INVENTORY_REQUEST.value
    assert wire["sender"] == connection.identity
    assert wire["data"] == {"query": ["*"]}
    await connection.close()


@pytest.mark.asyncio
async def test_close_is_idempotent():
    connection, stubs = make_connection()
    await connection.connect()
    await connection.close()
    await connection.close()
    assert stubs[0].disconnect_calls == 1
    with pytest.raises(ConnectionError):
        await connection.connect()


def test_inbound_messages_reach_the_handler():
    connection = BusConnection(fast_settings().broker_url)
    received = []
    connection.set_on_message(received.append)
    connection._receive({
        "id": "m1",
        "sender": AGENT1,
        "message_type": MessageType.RPC_BLOCKING_RESPONSE.value,
        "data": {"transaction_id": "t1", "results": {}},
    })
    assert len(received) == 1
    assert received[0].sender == AGENT1


def test_malformed_inbound_frames_are_dropped(caplog):
    connection = BusConnection(fast_settings().broker_url)
    received = []
    connection.set_on_message(received.append)
    with caplog.at_level(logging.WARNING, logger="pcp_controller.transport.socketio"):
        connection._receive({"sender": AGENT1, "message_type": "http://example.com/unknown"})
        connection._receive("garbage")
    assert received == []
    assert "Dropping inbound frame" in caplog.text
