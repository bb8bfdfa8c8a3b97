"""
PXP RPC requests: blocking and non-blocking module actions on agents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional

from pcp_controller.correlation import CompletionPolicy
from pcp_controller.models.envelope import InboundMessage, MessageType, RpcRequestData
from pcp_controller.transport.envelope import build_envelope

if TYPE_CHECKING:
    from pcp_controller.client import AsyncController

DEFAULT_MODULE = "pxp-module-puppet"
DEFAULT_ACTION = "run"


class RpcAPI:
    def __init__(self, controller: AsyncController):
        self._controller = controller

    async def blocking_request(
        self,
        targets: Iterable[str],
        module: str = DEFAULT_MODULE,
        action: str = DEFAULT_ACTION,
        params: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, InboundMessage]:
        """Run an action and wait for every target's rpc_blocking_response."""
        return await self.request(targets, module, action, params, blocking=True, timeout=timeout)

    async def non_blocking_request(
        self,
        targets: Iterable[str],
        module: str = DEFAULT_MODULE,
        action: str = DEFAULT_ACTION,
        params: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, InboundMessage]:
        """Start an action; replies are expected to be rpc_provisional_response."""
        return await self.request(targets, module, action, params, blocking=False, timeout=timeout)

    async def request(
        self,
        targets: Iterable[str],
        module: str,
        action: str,
        params: Optional[Any],
        blocking: bool,
        timeout: Optional[float] = None,
    ) -> dict[str, InboundMessage]:
        settings = self._controller.settings
        envelope = build_envelope(
            MessageType.RPC_BLOCKING_REQUEST if blocking else MessageType.RPC_NON_BLOCKING_REQUEST,
            targets,
            None,
            ttl=settings.message_expiry_seconds,
            correlated=True,
        )
        data = RpcRequestData(
            transaction_id=envelope.correlation_id,  # type: ignore[arg-type]
            module=module,
            action=action,
            params=params if params is not None else {},
            notify_outcome=None if blocking else False,
        )
        envelope.data = data.model_dump(exclude_none=True)
        return await self._controller.send_and_wait(
            envelope,
            CompletionPolicy.ALL_TARGETS,
            timeout=timeout if timeout is not None else settings.operation_expiry_seconds,
        )
