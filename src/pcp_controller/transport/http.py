"""
REST client for the broker's status service.
"""

from typing import Any, Optional

import httpx

from pcp_controller.config import Credentials, build_ssl_context
from pcp_controller.errors import PCPControllerError

USER_AGENT = "pcp-controller/0.1.0"


class HttpClient:
    def __init__(
        self,
        base_url: str,
        credentials: Optional[Credentials] = None,
        verify: bool = False,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        # verification is off unless requested
        context = build_ssl_context(credentials or Credentials()) if verify else None
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            verify=context if context is not None else verify,
            timeout=timeout,
            transport=transport,
        )

    async def get(self, path: str) -> Any:
        resp = await self._client.get(path)
        if resp.status_code >= 400:
            raise PCPControllerError("http_error", f"HTTP {resp.status_code}: {resp.text[:200]}")
        return resp.json()

    async def close(self) -> None:
        await self._client.aclose()
