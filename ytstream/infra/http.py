import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import httpx

from ytstream.config.settings import config
from ytstream.core.errors import ProtocolError, RequestError
from ytstream.core.state import state
from ytstream.infra.cache import AsyncTTLCache
from ytstream.utils.locale import safe_url_for_log

logger = logging.getLogger(__name__)

UA_CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

LANG_US = "en-US,en;q=0.9"

COOKIE_DOMAIN = ".youtube.com"

# Consent cookie, without it the watch page is an interstitial
DEFAULT_COOKIES = {"SOCS": "CAI"}


def create_http_client(
    proxy: Optional[str] = None,
    cookies: Optional[Union[Mapping[str, str], Iterable[Dict[str, Any]]]] = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """
    Build the client shared by every request of a resolution.

    ``cookies`` is either a name -> value mapping or a list of exported
    browser cookies (dicts with ``name``, ``value`` and optionally
    ``domain``/``path``). The consent cookie is added when missing.
    """
    jar = httpx.Cookies()
    if cookies:
        items = cookies.items() if isinstance(cookies, Mapping) else (
            (c["name"], c) for c in cookies
        )
        for name, value in items:
            if isinstance(value, dict):
                jar.set(name, value["value"], domain=value.get("domain") or COOKIE_DOMAIN, path=value.get("path") or "/")
            else:
                jar.set(name, value, domain=COOKIE_DOMAIN)
    for name, value in DEFAULT_COOKIES.items():
        if jar.get(name) is None:
            jar.set(name, value, domain=COOKIE_DOMAIN)

    kwargs.setdefault("timeout", config.download.request_timeout)
    return httpx.AsyncClient(
        follow_redirects=True,
        proxy=proxy,
        cookies=jar,
        headers={"User-Agent": UA_CHROME, "Accept-Language": LANG_US},
        **kwargs,
    )


def get_http_client() -> httpx.AsyncClient:
    """Process-wide client, created on first use"""
    if state.http_client is None or state.http_client.is_closed:
        state.http_client = create_http_client()
    return state.http_client


async def close_http_client() -> None:
    if state.http_client is not None:
        await state.http_client.aclose()
        state.http_client = None


# Page bodies by URL, shared by every fetcher in the process
watch_page_cache = AsyncTTLCache(config.cache.watch_page_ttl)


class PageFetcher:
    """
    Thin request helper over a shared httpx client.
    JSON bodies are decoded, everything else comes back as text.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        page_cache: Optional[AsyncTTLCache] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.client = client or get_http_client()
        self.page_cache = page_cache if page_cache is not None else watch_page_cache
        self.headers = dict(headers or {})

    async def request(
        self,
        url: str,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
    ) -> Any:
        merged = {**self.headers, **(headers or {})}
        try:
            resp = await self.client.request(method, url, params=params, headers=merged, json=json_body)
        except httpx.TransportError as e:
            raise RequestError(f"Request to {safe_url_for_log(url)} failed: {e}", url=url) from e

        if not resp.is_success:
            raise RequestError(
                f"Status code: {resp.status_code}",
                status_code=resp.status_code,
                url=url,
            )

        if "application/json" in resp.headers.get("content-type", ""):
            try:
                return resp.json()
            except ValueError as e:
                raise ProtocolError(f"Invalid JSON from {safe_url_for_log(url)}", resp.text) from e
        return resp.text

    async def fetch_cached(self, url: str, **kwargs: Any) -> Any:
        """GET memoized by URL for the page cache TTL"""
        return await self.page_cache.get_or_compute(url, lambda: self.request(url, **kwargs))

    def cookie_header(self) -> str:
        pairs = {}
        for cookie in self.client.cookies.jar:
            if not cookie.domain or cookie.domain.lstrip(".").endswith("youtube.com"):
                pairs[cookie.name] = cookie.value
        for name, value in DEFAULT_COOKIES.items():
            pairs.setdefault(name, value)
        return "; ".join(f"{k}={v}" for k, v in pairs.items())
