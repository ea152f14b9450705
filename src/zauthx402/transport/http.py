"""
REST HTTP client for the zauth API — event ingestion, verification, refunds.
"""

from typing import Any, Optional

import httpx

from zauthx402.config import DEFAULT_API_ENDPOINT
from zauthx402.errors import ApiError

SDK_VERSION = "0.1.0"


class HttpClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_ENDPOINT,
        environment: str = "development",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "User-Agent": f"zauthx402-python/{SDK_VERSION}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-API-Key": api_key,
                "X-SDK-Version": SDK_VERSION,
                "X-Environment": environment,
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @staticmethod
    def _check(resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            raise ApiError(f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)
        if not resp.content:
            return None
        return resp.json()

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return self._check(await self._client.get(path, params=params))

    async def post(self, path: str, body: Optional[Any] = None) -> Any:
        return self._check(await self._client.post(path, json=body))

    async def put(self, path: str, body: Optional[Any] = None) -> Any:
        return self._check(await self._client.put(path, json=body))

    async def close(self) -> None:
        await self._client.aclose()
