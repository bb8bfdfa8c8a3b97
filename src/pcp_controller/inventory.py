"""
Broker inventory queries and agent presence checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pcp_controller.correlation import CompletionPolicy
from pcp_controller.errors import ProtocolError
from pcp_controller.models.envelope import (
    SERVER_IDENTITY,
    InventoryRequestData,
    InventoryResponseData,
    MessageType,
)
from pcp_controller.polling import poll_until
from pcp_controller.transport.envelope import build_envelope

if TYPE_CHECKING:
    from pcp_controller.client import AsyncController


class InventoryAPI:
    def __init__(self, controller: AsyncController):
        self._controller = controller

    async def query(self, pattern: str) -> list[str]:
        """Identities associated with the broker that match pattern, e.g. pcp://*/agent."""
        settings = self._controller.settings
        envelope = build_envelope(
            MessageType.INVENTORY_REQUEST,
            [SERVER_IDENTITY],
            InventoryRequestData(query=[pattern]).model_dump(),
            ttl=settings.message_expiry_seconds,
        )
        responses = await self._controller.send_and_wait(
            envelope, CompletionPolicy.ANY_ONE, timeout=settings.operation_expiry_seconds,
        )
        message = responses[SERVER_IDENTITY]
        if message.message_type is not MessageType.INVENTORY_RESPONSE:
            raise ProtocolError(
                f"Expected inventory_response, got {message.message_type.value}",
                details={"data": message.data},
            )
        return message.payload(InventoryResponseData).uris

    async def is_associated(self, identity: str, retries: Optional[int] = None) -> bool:
        """Poll until identity appears in the inventory. retries=0 checks once."""
        async def present() -> bool:
            return identity in await self.query(identity)

        return await self._poll(present, retries, f"{identity} associated")

    async def is_not_associated(self, identity: str, retries: Optional[int] = None) -> bool:
        """Poll until identity is absent from the inventory. retries=0 checks once."""
        async def absent() -> bool:
            return identity not in await self.query(identity)

        return await self._poll(absent, retries, f"{identity} not associated")

    async def _poll(self, check, retries: Optional[int], description: str) -> bool:
        settings = self._controller.settings
        if retries is None:
            retries = settings.inventory_poll_retries
        return await poll_until(
            check, settings.inventory_poll_interval, retries,
            sleep=self._controller.sleep, description=description,
        )
