"""
Socket.IO connection to the PCP broker.

Connects with a bounded number of attempts, then associates with the broker
by sending associate_request and waiting for a successful associate_response.
One inbound handler per connection; install it before sending anything that
expects a reply.
"""

import asyncio
import logging
import socket
from typing import Any, Callable, Optional

import aiohttp
import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from pcp_controller.config import Credentials, build_ssl_context
from pcp_controller.errors import ConnectionError, ProtocolError
from pcp_controller.models.envelope import (
    SERVER_IDENTITY,
    AssociateResponseData,
    Envelope,
    InboundMessage,
    MessageType,
)
from pcp_controller.transport.envelope import build_envelope, parse_message, serialize_envelope

logger = logging.getLogger(__name__)

SOCKETIO_PATH = "/pcp/socket.io/"
RESERVED_EVENTS = ("connect", "disconnect", "connect_error")

MessageHandler = Callable[[InboundMessage], None]


def client_identity(client_type: str, hostname: Optional[str] = None) -> str:
    return f"pcp://{(hostname or socket.gethostname()).lower()}/{client_type}"


class BusConnection:
    def __init__(
        self,
        broker_url: str,
        client_type: str = "pcp-controller",
        credentials: Optional[Credentials] = None,
        retries: int = 10,
        attempt_timeout: float = 5.0,
        association_timeout: float = 10.0,
        transports: Optional[list[str]] = None,
    ):
        self._broker_url = broker_url
        self._credentials = credentials or Credentials()
        self._retries = retries
        self._attempt_timeout = attempt_timeout
        self._association_timeout = association_timeout
        self._transports = transports or ["websocket"]
        self.identity = client_identity(client_type)
        self._sio: Optional[socketio.AsyncClient] = None
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._handler: Optional[MessageHandler] = None
        self._association: Optional[asyncio.Future] = None
        self._associated = False
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._associated and self._sio is not None and self._sio.connected

    def set_on_message(self, handler: Optional[MessageHandler]) -> None:
        """Install the single inbound handler (replaces any previous one)."""
        self._handler = handler

    async def connect(self) -> None:
        if self.connected:
            return
        if self._closed:
            raise ConnectionError("Connection already closed")

        attempts = 0
        last_error: Optional[BaseException] = None
        while attempts < self._retries:
            attempts += 1
            self._sio = self._make_client()
            try:
                await asyncio.wait_for(
                    self._sio.connect(
                        self._broker_url,
                        transports=self._transports,
                        socketio_path=SOCKETIO_PATH,
                        wait_timeout=self._attempt_timeout,
                    ),
                    timeout=self._attempt_timeout * 2,
                )
                break
            except (SocketIOConnectionError, asyncio.TimeoutError) as e:
                last_error = e
                logger.info("Connect attempt %d/%d to %s failed: %s", attempts, self._retries, self._broker_url, e)
                await self._release()
        else:
            await self.close()
            raise ConnectionError(
                f"Failed to connect to {self._broker_url} after {attempts} attempts: {last_error}",
                details={"broker": self._broker_url, "attempts": attempts},
            )

        try:
            await self._associate()
        except BaseException:
            await self.close()
            raise
        logger.info("Associated with %s as %s", self._broker_url, self.identity)

    async def send(self, envelope: Envelope) -> None:
        if not self.connected:
            raise ConnectionError("Not connected to the broker")
        envelope.sender = self.identity
        logger.debug("Sending %s (%s) to %s", envelope.message_type.value, envelope.id, envelope.targets)
        await self._sio.emit(envelope.message_type.value, serialize_envelope(envelope))  # type: ignore[union-attr]

    async def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._associated = False
        await self._release()
        logger.info("Connection to %s closed", self._broker_url)

    async def _release(self) -> None:
        sio, self._sio = self._sio, None
        if sio is not None:
            await sio.disconnect()
        session, self._http_session = self._http_session, None
        if session is not None:
            await session.close()

    def _make_client(self) -> socketio.AsyncClient:
        context = build_ssl_context(self._credentials)
        kwargs: dict[str, Any] = {"reconnection": False}
        if context is not None:
            self._http_session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=context))
            kwargs["http_session"] = self._http_session
        sio = socketio.AsyncClient(**kwargs)

        @sio.on("*")
        async def on_any(event: str, data: Any) -> None:
            if event in RESERVED_EVENTS:
                return
            self._receive(data)

        @sio.event
        async def disconnect(*_args: Any) -> None:
            if self._associated:
                logger.warning("Disconnected from %s", self._broker_url)
            self._associated = False

        return sio

    async def _associate(self) -> None:
        loop = asyncio.get_running_loop()
        self._association = loop.create_future()
        request = build_envelope(
            MessageType.ASSOCIATE_REQUEST, [SERVER_IDENTITY], None,
            ttl=self._association_timeout, sender=self.identity,
        )
        await self._sio.emit(request.message_type.value, serialize_envelope(request))  # type: ignore[union-attr]
        try:
            message: InboundMessage = await asyncio.wait_for(self._association, timeout=self._association_timeout)
        except asyncio.TimeoutError:
            raise ConnectionError(
                f"No associate_response from {self._broker_url} within {self._association_timeout}s",
                details={"broker": self._broker_url, "identity": self.identity},
            )
        finally:
            self._association = None

        try:
            response = message.payload(AssociateResponseData)
        except ProtocolError as e:
            raise ConnectionError(f"Invalid associate_response: {e}", details=e.details)
        if not response.success:
            raise ConnectionError(
                f"Broker refused association of {self.identity}: {response.reason or 'no reason given'}",
                details={"broker": self._broker_url, "identity": self.identity},
            )
        self._associated = True

    def _receive(self, raw: Any) -> None:
        try:
            message = parse_message(raw)
        except ProtocolError as e:
            logger.warning("Dropping inbound frame: %s", e)
            return

        if message.message_type is MessageType.ASSOCIATE_RESPONSE:
            if self._association is not None and not self._association.done():
                self._association.set_result(message)
            return

        logger.debug("Received %s from %s", message.message_type.value, message.sender)
        if self._handler is not None:
            self._handler(message)
