"""Origin fetches over httpx."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

from .errors import LingoProxyError

logger = logging.getLogger(__name__)

FORWARDED_HEADERS = ("user-agent", "accept-language", "referer", "cookie", "content-type")
DEFAULT_USER_AGENT = "Mozilla/5.0 (Translation Proxy) AppleWebKit/537.36"
HOP_BY_HOP = frozenset(
    {
        "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
        "te", "trailers", "transfer-encoding", "upgrade", "content-length",
        "content-encoding",
    }
)


class OriginFetchError(LingoProxyError):
    """Raised when the origin cannot be reached or times out."""


@dataclass
class OriginResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    encoding: Optional[str] = None
    url: str = ""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()

    @property
    def is_redirect(self) -> bool:
        return self.status_code in (301, 302, 303, 307, 308) and "location" in self.headers

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")


def forwardable_headers(headers: Mapping[str, str], target_lang: str) -> Dict[str, str]:
    forwarded = {name: headers[name] for name in FORWARDED_HEADERS if headers.get(name)}
    forwarded.setdefault("user-agent", DEFAULT_USER_AGENT)
    forwarded["lingoproxy-language"] = target_lang
    return forwarded


def response_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Origin headers that can be passed back to the visitor unchanged."""

    return {name: value for name, value in headers.items() if name.lower() not in HOP_BY_HOP}


def rewrite_location(location: str, *, origin_host: str, proxy_host: str) -> str:
    """Point an origin redirect at the proxy host."""

    parts = urlsplit(location)
    if not parts.netloc or parts.hostname != origin_host.split(":", 1)[0]:
        return location
    scheme = "http" if proxy_host.startswith("localhost") else parts.scheme
    return urlunsplit((scheme, proxy_host, parts.path, parts.query, parts.fragment))


class OriginFetcher:
    """Fetches pages from one origin without following redirects."""

    def __init__(self, origin: str, *, timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self.origin = origin.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def fetch(
        self,
        path: str,
        *,
        query: str = "",
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> OriginResponse:
        url = f"{self.origin}{path}" + (f"?{query}" if query else "")
        try:
            if self._client is not None:
                response = await self._request(self._client, method, url, headers, body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as client:
                    response = await self._request(client, method, url, headers, body)
        except httpx.HTTPError as exc:
            raise OriginFetchError(f"Fetching {url} failed: {exc}") from exc
        return OriginResponse(
            status_code=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            content=response.content,
            encoding=response.encoding,
            url=str(response.url),
        )

    async def _request(self, client, method, url, headers, body) -> httpx.Response:
        logger.debug("%s %s", method, url)
        return await client.request(
            method,
            url,
            headers=dict(headers or {}),
            content=body,
            timeout=self.timeout,
        )
