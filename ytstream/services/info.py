import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, Optional

from redis.exceptions import RedisError

from ytstream.config.settings import config
from ytstream.core.errors import ProtocolError, RequestError, ResolutionError
from ytstream.infra.cache import AsyncTTLCache
from ytstream.infra.http import PageFetcher
from ytstream.infra.redis import get_redis
from ytstream.models.format import Format
from ytstream.models.info import VideoInfo
from ytstream.models.options import InfoOptions
from ytstream.models.request import InfoRequest
from ytstream.models.response import BasicInfoResponse, InfoResponse
from ytstream.services.decipher import decipher_formats
from ytstream.services.formats import add_format_meta, best_format, sort_formats
from ytstream.services.manifest import get_dash_manifest, get_hls_manifest
from ytstream.services.resolver import BASE_URL, MultiClientResolver
from ytstream.services.update import schedule_update_check
from ytstream.utils.hash import info_cache_key
from ytstream.utils.locale import safe_url_for_log
from ytstream.utils.parse import parse_int
from ytstream.utils.url import get_video_id

logger = logging.getLogger(__name__)

info_cache = AsyncTTLCache(config.cache.info_ttl)


def build_video_details(player_response: dict, video_id: str) -> Dict:
    microformat = (player_response.get("microformat") or {}).get("playerMicroformatRenderer") or {}
    details = {**microformat, **(player_response.get("videoDetails") or {})}
    details["video_url"] = BASE_URL + video_id
    return details


def _fetcher(options: InfoOptions) -> PageFetcher:
    return PageFetcher(client=options.client, headers=options.request_headers)


async def _basic_info(video_id: str, options: InfoOptions) -> VideoInfo:
    resolver = MultiClientResolver(_fetcher(options), options)
    page = await resolver.fetch_watch_page(video_id)
    resolver.preflight(page)
    html5player = await resolver.get_html5player(video_id, page)
    return VideoInfo(
        player_response=page.player_response,
        response=page.initial_data,
        html5player=html5player,
        video_details=build_video_details(page.player_response, video_id),
        video_url=BASE_URL + video_id,
        full=False,
    )


async def _manifest_formats(
    loader: Callable[[str, PageFetcher], Awaitable[Dict[str, Format]]],
    url: str,
    fetcher: PageFetcher,
) -> Dict[str, Format]:
    try:
        return await loader(url, fetcher)
    except (RequestError, ProtocolError) as e:
        logger.warning(f"Manifest {safe_url_for_log(url)} skipped: {e}")
        return {}


async def _full_info(video_id: str, options: InfoOptions) -> VideoInfo:
    fetcher = _fetcher(options)
    resolver = MultiClientResolver(fetcher, options)
    resolution = await resolver.resolve(video_id)

    # The sandbox blocks while a transform runs
    deciphered, *manifests = await asyncio.gather(
        asyncio.to_thread(decipher_formats, resolution.formats, resolution.cipher_script),
        *(_manifest_formats(get_dash_manifest, url, fetcher) for url in resolution.dash_manifest_urls),
        *(_manifest_formats(get_hls_manifest, url, fetcher) for url in resolution.hls_manifest_urls),
    )

    merged: Dict[str, Format] = dict(deciphered)
    for manifest in manifests:
        for key, fmt in manifest.items():
            merged.setdefault(key, fmt)

    formats = [add_format_meta(f) for f in merged.values()]
    formats = sort_formats(f for f in formats if f.url and f.mime_type)
    if not formats:
        raise ResolutionError("No playable formats found", video_id)

    page = resolution.page
    return VideoInfo(
        player_response=page.player_response,
        response=page.initial_data,
        client_responses=resolution.client_responses,
        html5player=resolution.html5player,
        video_details=build_video_details(page.player_response, video_id),
        formats=formats,
        best_format=best_format(formats),
        video_url=BASE_URL + video_id,
        dash_manifest_url=next(iter(resolution.dash_manifest_urls), None),
        hls_manifest_url=next(iter(resolution.hls_manifest_urls), None),
        full=True,
    )


async def get_basic_info(link: str, options: Optional[InfoOptions] = None) -> VideoInfo:
    """Metadata without deciphered formats"""
    options = options or InfoOptions()
    video_id = get_video_id(link)
    schedule_update_check()
    return await info_cache.get_or_compute(
        options.cache_key("getBasicInfo", video_id),
        lambda: _basic_info(video_id, options),
    )


async def get_info(link: str, options: Optional[InfoOptions] = None) -> VideoInfo:
    """
    Full resolution: every profile queried, formats deciphered, manifests
    expanded, enriched and ranked.
    """
    options = options or InfoOptions()
    video_id = get_video_id(link)
    schedule_update_check()
    return await info_cache.get_or_compute(
        options.cache_key("getInfo", video_id),
        lambda: _full_info(video_id, options),
    )


def _thumbnail(details: dict) -> Optional[str]:
    thumbnails = (details.get("thumbnail") or {}).get("thumbnails") or []
    return thumbnails[-1].get("url") if thumbnails else None


def to_response(info: VideoInfo) -> BasicInfoResponse:
    details = info.video_details
    common = dict(
        video_id=info.video_id or "",
        title=details.get("title"),
        author=details.get("author") or details.get("ownerChannelName"),
        length_seconds=parse_int(details.get("lengthSeconds")),
        thumbnail=_thumbnail(details),
        description=details.get("shortDescription"),
        video_url=info.video_url,
        is_live=info.is_live,
        video_details=details,
    )
    if not info.full:
        return BasicInfoResponse(**common)
    return InfoResponse(
        **common,
        formats=[f.to_wire() for f in info.formats],
        best_format=info.best_format.to_wire() if info.best_format else None,
        html5player=info.html5player,
    )


class VideoInfoService:
    """Info lookups for the HTTP API, cached in Redis when available"""

    @staticmethod
    def options_for(request: InfoRequest, locale: str) -> InfoOptions:
        kwargs = {"lang": request.lang or locale}
        if request.player_clients:
            kwargs["player_clients"] = request.player_clients
        return InfoOptions(**kwargs)

    @staticmethod
    async def fetch(request: InfoRequest, locale: str, full: bool = True) -> dict:
        options = VideoInfoService.options_for(request, locale)
        video_id = get_video_id(request.url)
        cache_key = info_cache_key("info" if full else "basic", video_id, options.lang)

        redis = get_redis()
        if redis:
            try:
                cached = await redis.get(cache_key)
                if cached:
                    return json.loads(cached)
            except RedisError as e:
                logger.debug(f"Redis read failed for {cache_key}: {e}")

        info = await (get_info if full else get_basic_info)(video_id, options)
        payload = to_response(info).model_dump()

        if redis:
            try:
                await redis.setex(cache_key, config.cache.api_info_ttl, json.dumps(payload, ensure_ascii=False))
            except RedisError as e:
                logger.debug(f"Redis write failed for {cache_key}: {e}")

        return payload
