"""Shared fixtures: an in-memory bus with scripted agents."""

import asyncio
import uuid
from typing import Any, Callable, Iterable, Optional, Union

import httpx
import pytest
import pytest_asyncio

from pcp_controller import AsyncController, ControllerSettings
from pcp_controller.models.envelope import Envelope, InboundMessage, MessageType
from pcp_controller.transport.http import HttpClient

CONTROLLER = "pcp://controller.example.com/pcp-controller"
AGENT1 = "pcp://agent1.example.com/agent"
AGENT2 = "pcp://agent2.example.com/agent"
AGENT3 = "pcp://agent3.example.com/agent"

# A responder receives the envelope sent to its target and returns (delay, reply) pairs
Responder = Callable[[Envelope], Optional[Iterable[tuple[float, InboundMessage]]]]


def reply(
    envelope: Envelope,
    sender: str,
    message_type: MessageType,
    data: Any = None,
    in_reply_to: bool = True,
) -> InboundMessage:
    return InboundMessage(
        sender=sender,
        message_type=message_type,
        id=str(uuid.uuid4()),
        in_reply_to=envelope.id if in_reply_to else None,
        data=data,
    )


class FakeBus:
    """Stands in for BusConnection: records sent envelopes, delivers scripted replies."""

    def __init__(self, identity: str = CONTROLLER):
        self.identity = identity
        self.connected = False
        self.sent: list[Envelope] = []
        self.responders: dict[str, Responder] = {}
        self.handler: Optional[Callable[[InboundMessage], None]] = None
        self.close_calls = 0

    def set_on_message(self, handler: Optional[Callable[[InboundMessage], None]]) -> None:
        self.handler = handler

    def on(self, target: str, responder: Responder) -> None:
        self.responders[target] = responder

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False

    async def send(self, envelope: Envelope) -> None:
        envelope.sender = self.identity
        self.sent.append(envelope)
        loop = asyncio.get_running_loop()
        for target in envelope.targets:
            responder = self.responders.get(target)
            if responder is None:
                continue
            for delay, message in responder(envelope) or []:
                loop.call_later(delay, self.deliver, message)

    def deliver(self, message: Union[InboundMessage, dict[str, Any]]) -> None:
        if isinstance(message, dict):
            message = InboundMessage.model_validate(message)
        assert self.handler is not None
        self.handler(message)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def fast_settings(**overrides: Any) -> ControllerSettings:
    values: dict[str, Any] = dict(
        message_expiry_seconds=1,
        operation_expiry_seconds=1,
        provisional_expiry_seconds=1,
        inventory_poll_retries=5,
        inventory_poll_interval=1,
        status_query_retries=10,
        status_query_interval=1,
    )
    values.update(overrides)
    return ControllerSettings(**values)


def status_http(state: Any = "running", status_code: int = 200) -> HttpClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"state": state})

    return HttpClient("https://broker.example.com:8143", transport=httpx.MockTransport(handler))


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def controller(bus: FakeBus, sleeps: SleepRecorder):
    client = AsyncController(settings=fast_settings(), connection=bus, http=status_http(), sleep=sleeps)
    await client.connect()
    yield client
    await client.close()
