"""
Broker status polling.
"""

import logging

import httpx

from pcp_controller.errors import PCPControllerError
from pcp_controller.models.transaction import BrokerState
from pcp_controller.polling import poll_until
from pcp_controller.transport.http import HttpClient

logger = logging.getLogger(__name__)

STATUS_PATH = "/status/v1/services/broker-service"


class BrokerStatus:
    def __init__(self, http: HttpClient):
        self._http = http

    async def get_state(self) -> BrokerState:
        """Current broker service state; UNKNOWN when the status service cannot be read."""
        try:
            document = await self._http.get(STATUS_PATH)
        except (httpx.HTTPError, PCPControllerError, ValueError) as e:
            logger.warning("Broker status unavailable: %s", e)
            return BrokerState.UNKNOWN
        state = document.get("state") if isinstance(document, dict) else None
        try:
            return BrokerState(str(state).lower())
        except ValueError:
            logger.warning("Broker reported unrecognised state %r", state)
            return BrokerState.UNKNOWN

    async def wait_until_running(self, retries: int = 100, interval: float = 0.5) -> bool:
        async def running() -> bool:
            return await self.get_state() is BrokerState.RUNNING

        return await poll_until(running, interval, retries, description="broker running")

    async def close(self) -> None:
        await self._http.close()
