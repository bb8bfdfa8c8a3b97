"""
AsyncController and Controller: the main clients.

One connection per controller, shared by every operation issued on it.
Replies are routed by request id and correlation id, so any number of
requests can be outstanding at once.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from pcp_controller.actions import ActionTracker
from pcp_controller.broker import BrokerStatus
from pcp_controller.config import ControllerSettings
from pcp_controller.correlation import CompletionPolicy, InFlightRequest, ResponseCollector, wait_for_completion
from pcp_controller.errors import ConnectionError
from pcp_controller.inventory import InventoryAPI
from pcp_controller.models.envelope import Envelope, InboundMessage
from pcp_controller.rpc import RpcAPI
from pcp_controller.transport.http import HttpClient
from pcp_controller.transport.socketio import BusConnection

logger = logging.getLogger(__name__)


class AsyncController:
    """Async PCP controller client (primary)."""

    def __init__(
        self,
        settings: Optional[ControllerSettings] = None,
        connection: Optional[Any] = None,
        http: Optional[HttpClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or ControllerSettings()
        self._connection = connection or BusConnection(
            broker_url=self.settings.broker_url,
            client_type=self.settings.client_type,
            credentials=self.settings.credentials,
            retries=self.settings.connection_retries,
            attempt_timeout=self.settings.connection_timeout,
            association_timeout=self.settings.association_timeout,
        )
        self.sleep = sleep
        self._collector = ResponseCollector()
        # installed before connect so no early reply is lost
        self._connection.set_on_message(self._collector.dispatch)

        self.inventory = InventoryAPI(self)
        self.rpc = RpcAPI(self)
        self.actions = ActionTracker(self)
        self.broker = BrokerStatus(http or HttpClient(self.settings.status_url, self.settings.credentials))

    @property
    def connected(self) -> bool:
        return self._connection.connected

    @property
    def identity(self) -> str:
        return self._connection.identity

    @property
    def in_flight(self) -> int:
        return len(self._collector)

    async def connect(self) -> None:
        await self._connection.connect()

    async def close(self) -> None:
        try:
            await self._connection.close()
        finally:
            await self.broker.close()

    async def __aenter__(self) -> "AsyncController":
        try:
            await self.connect()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def send_and_wait(
        self,
        envelope: Envelope,
        policy: CompletionPolicy = CompletionPolicy.ALL_TARGETS,
        timeout: Optional[float] = None,
    ) -> dict[str, InboundMessage]:
        """Send an envelope and wait for its replies under the given completion policy.

        Raises TimeoutError (with the missing targets and the replies received)
        when the policy is not satisfied within timeout seconds.
        """
        self._ensure_connected()
        request = InFlightRequest(
            envelope.id,
            envelope.targets,
            timeout if timeout is not None else self.settings.operation_expiry_seconds,
            policy=policy,
            correlation_id=envelope.correlation_id,
        )
        self._collector.register(request)
        try:
            await self._connection.send(envelope)
            return await wait_for_completion(request)
        finally:
            self._collector.unregister(request)

    def _ensure_connected(self) -> None:
        if not self._connection.connected:
            raise ConnectionError("Not connected. Call connect() first.")


class Controller:
    """Sync wrapper around AsyncController. Owns its event loop."""

    def __init__(self, **kwargs: Any):
        self._async = AsyncController(**kwargs)
        self._loop = asyncio.new_event_loop()

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    def __enter__(self) -> "Controller":
        try:
            self.connect()
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def settings(self) -> ControllerSettings:
        return self._async.settings

    @property
    def connected(self) -> bool:
        return self._async.connected

    def connect(self) -> None:
        self._run(self._async.connect())

    def close(self) -> None:
        if self._loop.is_closed():
            return
        try:
            self._run(self._async.close())
        finally:
            self._loop.close()

    def inventory(self, pattern: str) -> list[str]:
        return self._run(self._async.inventory.query(pattern))

    def is_associated(self, identity: str, retries: Optional[int] = None) -> bool:
        return self._run(self._async.inventory.is_associated(identity, retries))

    def is_not_associated(self, identity: str, retries: Optional[int] = None) -> bool:
        return self._run(self._async.inventory.is_not_associated(identity, retries))

    def blocking_request(self, targets: list[str], module: str, action: str, params: Any = None) -> dict[str, InboundMessage]:
        return self._run(self._async.rpc.blocking_request(targets, module, action, params))

    def non_blocking_request(self, targets: list[str], module: str, action: str, params: Any = None) -> dict[str, InboundMessage]:
        return self._run(self._async.rpc.non_blocking_request(targets, module, action, params))

    def run_action(self, targets: list[str], module: str, action: str, params: Any = None, **kwargs: Any) -> dict[str, Any]:
        return self._run(self._async.actions.run(targets, module, action, params, **kwargs))

    def broker_state(self) -> Any:
        return self._run(self._async.broker.get_state())

    def wait_for_broker(self, retries: int = 100, interval: float = 0.5) -> bool:
        return self._run(self._async.broker.wait_until_running(retries, interval))
