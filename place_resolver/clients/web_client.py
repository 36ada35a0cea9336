"""
Singleton web client with rate limiting using aiolimiter.
"""
import json
from base64 import b64decode
from dataclasses import dataclass
from typing import Any, Dict, Optional

from aiohttp import BasicAuth, ClientSession, ClientTimeout
from aiolimiter import AsyncLimiter
from loguru import logger

from place_resolver.config import CONCURRENCY, REQUEST_TIMEOUT, ZYTE_API_KEY, ZYTE_URL


@dataclass
class FetchResponse:
    """Target-site response, whether fetched directly or through Zyte."""
    status: int
    url: str
    text: str

    def json(self) -> Any:
        return json.loads(self.text)


class WebClient:
    """
    Singleton client for outbound GET requests against map and search surfaces.
    Requests go straight to the target unless ZYTE_API_KEY is set, in which case
    they are routed through Zyte's smart proxy API.
    """
    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not WebClient._initialized:
            self.api_key = ZYTE_API_KEY
            self.proxy_url = ZYTE_URL
            self.timeout = ClientTimeout(total=REQUEST_TIMEOUT)
            # Token bucket shared by every resolution running in this process
            self.rate_limiter = AsyncLimiter(max_rate=CONCURRENCY, time_period=1.0)
            self._session: Optional[ClientSession] = None
            WebClient._initialized = True

    @property
    def uses_proxy(self) -> bool:
        return bool(self.api_key)

    async def _get_session(self) -> ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self.timeout)
        return self._session

    async def get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        allow_redirects: bool = True,
    ) -> FetchResponse:
        """
        Send a GET request and return status, final URL and decoded body.

        Args:
            url: Target URL to request.
            headers: Optional HTTP headers.
            allow_redirects: Follow redirects and report the resolved URL.

        Returns:
            FetchResponse for the target site.
        """
        async with self.rate_limiter:
            session = await self._get_session()
            try:
                if self.uses_proxy:
                    return await self._get_via_proxy(session, url, headers)
                async with session.get(url, headers=headers, allow_redirects=allow_redirects) as resp:
                    text = await resp.text(errors="ignore")
                    return FetchResponse(status=resp.status, url=str(resp.url), text=text)
            except Exception as e:
                logger.debug(f"⚠️ GET {url} failed: {e}")
                raise

    async def _get_via_proxy(
        self,
        session: ClientSession,
        url: str,
        headers: Optional[Dict[str, str]],
    ) -> FetchResponse:
        payload: Dict[str, Any] = {
            "url": url,
            "httpResponseBody": True,
            "httpRequestMethod": "GET",
        }
        if headers:
            payload["customHttpRequestHeaders"] = [
                {"name": k, "value": v} for k, v in headers.items()
            ]

        async with session.post(
            self.proxy_url,
            auth=BasicAuth(self.api_key, ""),
            json=payload,
        ) as resp:
            data = await resp.json()

            # Zyte-level failure (ban, quota), not the target's own status
            if "status" in data and data.get("status") not in [200, None]:
                raise Exception(
                    f"Zyte API error ({data.get('title', 'unknown')}): {data.get('detail', 'no details')}. "
                    f"Status: {data.get('status')}, Type: {data.get('type', 'unknown')}"
                )

            if "httpResponseBody" not in data:
                raise Exception(
                    f"Missing httpResponseBody in Zyte response. Response keys: {list(data.keys())}"
                )

            text = b64decode(data["httpResponseBody"]).decode("utf-8", errors="ignore")
            return FetchResponse(
                status=int(data.get("statusCode", 200)),
                url=data.get("url", url),
                text=text,
            )

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
