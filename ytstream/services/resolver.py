"""
Resolution across the web watch page and the device profiles.

The watch page is always fetched first: it carries the player script URL
and the playability status, which is checked before any device profile is
queried. Device profiles are then queried concurrently and reconciled in
configured priority order, so the result never depends on which call
finished first.
"""
import asyncio
import json
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

import httpx

from ytstream.core.errors import ProtocolError, ResolutionError, YtStreamError, play_error
from ytstream.infra.cache import AsyncTTLCache
from ytstream.infra.http import PageFetcher
from ytstream.models.options import InfoOptions
from ytstream.services import patterns
from ytstream.services.cipher import CipherScript, get_cipher_script, normalize_player_url
from ytstream.services.clients import PLAYER_API_URL, PROFILES, ClientProfile
from ytstream.utils.http_retry import RetryPolicy, retry_async
from ytstream.utils.parse import between, cut_after_js, try_parse_between

logger = logging.getLogger(__name__)

BASE_URL = "https://www.youtube.com/watch?v="
EMBED_URL = "https://www.youtube.com/embed/"

HTML5PLAYER_RE = re.compile(
    r'<script\s+src="([^"]+)"(?:\s+type="text\/javascript")?\s+name="player_ias\/base"\s*>|"jsUrl":"([^"]+)"'
)
PLAYER_RESPONSE_START = re.compile(r"\bytInitialPlayerResponse\s*=\s*\{")
INITIAL_DATA_START = re.compile(r"\bytInitialData(?:\"\])?\s*=\s*\{")


def _parse_object_after(body: str, start: "re.Pattern") -> Optional[dict]:
    data = between(body, start, "</script>")
    if not data:
        return None
    try:
        return json.loads(cut_after_js("{" + data))
    except ValueError:
        return None


def parse_player_response(body: str) -> Optional[dict]:
    left = "var ytInitialPlayerResponse = "
    return (
        try_parse_between(body, left, "}};", "", "}}")
        or try_parse_between(body, left, ";var")
        or try_parse_between(body, left, ";</script>")
        or _parse_object_after(body, PLAYER_RESPONSE_START)
    )


def parse_initial_data(body: str) -> Optional[dict]:
    for left in ("var ytInitialData = ", 'window["ytInitialData"] = '):
        data = try_parse_between(body, left, "}};", "", "}}") or try_parse_between(body, left, ";</script>")
        if data:
            return data
    return _parse_object_after(body, INITIAL_DATA_START)


def find_html5player(body: str) -> Optional[str]:
    match = HTML5PLAYER_RE.search(body)
    if not match:
        return None
    return urljoin(BASE_URL, match.group(1) or match.group(2))


def streaming_formats(player_response: Optional[dict]) -> List[dict]:
    streaming = (player_response or {}).get("streamingData") or {}
    return [*(streaming.get("formats") or []), *(streaming.get("adaptiveFormats") or [])]


def validate_player_response(response: Any, video_id: str) -> dict:
    """
    Reject responses that cannot be trusted for ``video_id``.
    Raises PlayabilityError or ProtocolError.
    """
    if not isinstance(response, dict):
        raise ProtocolError("Malformed response", response)
    error = play_error(response)
    if error:
        raise error
    details = response.get("videoDetails")
    if not details or details.get("videoId") != video_id:
        raise ProtocolError("Malformed response", response)
    return response


@dataclass
class WatchPage:
    video_id: str
    url: str
    player_response: dict
    initial_data: Optional[dict]
    html5player: Optional[str]


@dataclass
class Resolution:
    video_id: str
    page: WatchPage
    html5player: str
    cipher_script: CipherScript
    client_responses: Dict[str, dict] = field(default_factory=dict)
    formats: List[dict] = field(default_factory=list)
    dash_manifest_urls: List[str] = field(default_factory=list)
    hls_manifest_urls: List[str] = field(default_factory=list)


def reconcile(
    web_response: dict,
    client_responses: List[Tuple[str, dict]],
) -> Tuple[List[dict], List[str], List[str]]:
    """
    Raw formats plus DASH and HLS manifest URLs.

    Device responses that carry formats supersede the web formats; they are
    merged in the given order and the first occurrence of a URL wins.
    """
    sources = [resp for _, resp in client_responses if streaming_formats(resp)]
    if not sources:
        sources = [web_response]

    formats: List[dict] = []
    seen = set()
    dash: List[str] = []
    hls: List[str] = []
    for resp in sources:
        for raw in streaming_formats(resp):
            key = raw.get("url") or raw.get("signatureCipher") or raw.get("cipher")
            if key in seen:
                continue
            seen.add(key)
            formats.append(raw)

        streaming = resp.get("streamingData") or {}
        if streaming.get("dashManifestUrl") and streaming["dashManifestUrl"] not in dash:
            dash.append(streaming["dashManifestUrl"])
        if streaming.get("hlsManifestUrl") and streaming["hlsManifestUrl"] not in hls:
            hls.append(streaming["hlsManifestUrl"])

    return formats, dash, hls


class MultiClientResolver:
    def __init__(
        self,
        fetcher: PageFetcher,
        options: Optional[InfoOptions] = None,
        profiles: Mapping[str, ClientProfile] = PROFILES,
        cipher_cache: Optional[AsyncTTLCache] = None,
        sleep=asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.options = options or InfoOptions()
        self.profiles = profiles
        self.cipher_cache = cipher_cache
        self.policy = RetryPolicy(
            self.options.retry.max_retries,
            self.options.retry.backoff_inc,
            self.options.retry.backoff_max,
        )
        self._sleep = sleep

    async def _get(self, url: str) -> Any:
        return await retry_async(lambda: self.fetcher.fetch_cached(url), self.policy, sleep=self._sleep)

    def watch_url(self, video_id: str) -> str:
        return f"{BASE_URL}{video_id}&hl={self.options.lang}&bpctr={math.ceil(time.time())}&has_verified=1"

    async def fetch_watch_page(self, video_id: str) -> WatchPage:
        url = self.watch_url(video_id)
        body = await self._get(url)
        player_response = parse_player_response(body)
        if not player_response:
            raise ProtocolError("Unable to retrieve video metadata", body)
        return WatchPage(
            video_id=video_id,
            url=url,
            player_response=player_response,
            initial_data=parse_initial_data(body),
            html5player=find_html5player(body),
        )

    @staticmethod
    def preflight(page: WatchPage) -> None:
        error = play_error(page.player_response)
        if error:
            raise error

    async def get_html5player(self, video_id: str, page: WatchPage) -> Optional[str]:
        if page.html5player:
            return page.html5player
        body = await self._get(f"{EMBED_URL}{video_id}?hl={self.options.lang}")
        return find_html5player(body)

    async def signature_timestamp(self, player_url: str) -> Optional[int]:
        body = await self._get(player_url)
        match = patterns.SIGNATURE_TIMESTAMP.search(body)
        return int(match.group(2)) if match else None

    async def fetch_client(self, profile: ClientProfile, video_id: str, signature_timestamp: Optional[int]) -> dict:
        async def call() -> Any:
            params, headers, body = profile.build_request(
                video_id, self.fetcher.cookie_header(), signature_timestamp
            )
            return await self.fetcher.request(
                PLAYER_API_URL, method="POST", params=params, headers=headers, json_body=body
            )

        response = await retry_async(call, self.policy, sleep=self._sleep)
        return validate_player_response(response, video_id)

    async def fetch_clients(self, video_id: str, signature_timestamp: Optional[int]) -> List[Tuple[str, dict]]:
        """Validated device responses in configured priority order"""
        names = []
        for name in self.options.player_clients:
            if name in self.profiles:
                names.append(name)
            else:
                logger.warning(f"Unknown player client {name}, skipping")

        results = await asyncio.gather(
            *(self.fetch_client(self.profiles[n], video_id, signature_timestamp) for n in names),
            return_exceptions=True,
        )

        valid = []
        for name, result in zip(names, results):
            if isinstance(result, (YtStreamError, httpx.HTTPError)):
                logger.warning(f"{name} player response discarded: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            valid.append((name, result))
        return valid

    async def resolve(self, video_id: str, page: Optional[WatchPage] = None) -> Resolution:
        if page is None:
            page = await self.fetch_watch_page(video_id)
        self.preflight(page)

        html5player = await self.get_html5player(video_id, page)
        if not html5player:
            raise ResolutionError("Unable to find html5player file", video_id)
        html5player = normalize_player_url(html5player)

        signature_timestamp = await self.signature_timestamp(html5player)
        cipher_script, client_responses = await asyncio.gather(
            get_cipher_script(html5player, self.fetcher, cache=self.cipher_cache),
            self.fetch_clients(video_id, signature_timestamp),
        )

        formats, dash, hls = reconcile(page.player_response, client_responses)
        return Resolution(
            video_id=video_id,
            page=page,
            html5player=html5player,
            cipher_script=cipher_script,
            client_responses=dict(client_responses),
            formats=formats,
            dash_manifest_urls=dash,
            hls_manifest_urls=hls,
        )
