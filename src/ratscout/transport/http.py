"""
HTTP client for the upstream data services (Dexcom Share, OpenWeatherMap, ipgeolocation).
"""

from typing import Any, Optional

import httpx

from ratscout.errors import HttpStatusError, UpstreamUnavailable

USER_AGENT = "ratscout/0.1.0"


class HttpClient:
    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{method} {url} failed: {e}") from e
        if resp.status_code != 200:
            raise HttpStatusError(resp.status_code, resp.text[:200])
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"Invalid JSON from {resp.request.url}: {e}") from e

    async def get(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        resp = await self._send("GET", url, params=params)
        return self._json(resp)

    async def post(self, url: str, body: Optional[dict[str, Any]] = None) -> Any:
        resp = await self._send("POST", url, json=body, headers={"Content-Type": "application/json"})
        return self._json(resp)

    async def close(self) -> None:
        await self._client.aclose()
