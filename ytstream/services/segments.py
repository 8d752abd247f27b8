"""
Segment-by-segment consumption of HLS and DASH playlists.

Segments are fetched up to ``readahead`` at a time but always emitted in
playlist order. Live playlists are refreshed until they carry an end
marker.
"""
import asyncio
import logging
import math
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Deque, List, Optional, Tuple, Union
from urllib.parse import urljoin

import httpx
import isodate
import m3u8
from lxml import etree

from ytstream.core.errors import RequestError
from ytstream.utils.http_retry import RetryPolicy, is_transient, media_headers, retry_async
from ytstream.utils.parse import parse_timestamp
from ytstream.utils.ranges import range_header

logger = logging.getLogger(__name__)

# Refreshes in a row without new segments before a live playlist is considered gone
MAX_IDLE_REFRESHES = 10

EPOCH = datetime(1970, 1, 1)


@dataclass
class Segment:
    url: str
    num: int
    duration_ms: float = 0.0
    byte_range: Optional[str] = None
    init: bool = False


@dataclass
class SegmentData:
    segment: Segment
    data: bytes
    index: int
    total: int


def parse_iso_duration(value: Optional[str]) -> Optional[float]:
    """``PT1H2M3.5S`` in milliseconds"""
    if not value:
        return None
    try:
        duration = isodate.parse_duration(value.strip())
    except isodate.ISO8601Error:
        return None
    if isinstance(duration, isodate.Duration):
        # Year and month parts need an anchor date
        duration = duration.totimedelta(start=EPOCH)
    return duration.total_seconds() * 1000


def parse_hls_playlist(body: str, url: str) -> Tuple[List[Segment], bool, Optional[str]]:
    """
    Segments, whether the playlist is finished, and for a master playlist
    the URL of its highest-bandwidth variant instead.
    """
    playlist = m3u8.loads(body, uri=url)
    if playlist.is_variant:
        variants = sorted(playlist.playlists, key=lambda p: p.stream_info.bandwidth or 0)
        return [], False, variants[-1].absolute_uri if variants else None

    segments: List[Segment] = []
    seen_maps = set()
    next_offset = 0
    for i, seg in enumerate(playlist.segments):
        init = seg.init_section
        if init is not None and init.absolute_uri not in seen_maps:
            seen_maps.add(init.absolute_uri)
            segments.append(Segment(url=init.absolute_uri, num=-1, init=True))

        byte_range = None
        if seg.byterange:
            length, _, offset = seg.byterange.partition("@")
            start = int(offset) if offset else next_offset
            next_offset = start + int(length)
            byte_range = range_header(start, next_offset - 1)

        segments.append(Segment(
            url=seg.absolute_uri,
            num=(playlist.media_sequence or 0) + i,
            duration_ms=(seg.duration or 0) * 1000,
            byte_range=byte_range,
        ))
    return segments, bool(playlist.is_endlist), None


def _child(elem: Optional[etree._Element], name: str) -> Optional[etree._Element]:
    if elem is None:
        return None
    return next(elem.iterchildren(f"{{*}}{name}"), None)


def _first_child(name: str, *holders: etree._Element) -> Optional[etree._Element]:
    for holder in holders:
        found = _child(holder, name)
        if found is not None:
            return found
    return None


def _children(elem: Optional[etree._Element], name: str) -> List[etree._Element]:
    if elem is None:
        return []
    return list(elem.iterchildren(f"{{*}}{name}"))


def _fill_template(template: str, rep_id: str, bandwidth: str, number: Optional[int] = None, time: Optional[int] = None) -> str:
    out = template.replace("$RepresentationID$", rep_id).replace("$Bandwidth$", bandwidth)
    if number is not None:
        out = re.sub(r"\$Number(?:%0(\d+)d)?\$", lambda m: str(number).zfill(int(m.group(1) or 0)), out)
    if time is not None:
        out = out.replace("$Time$", str(time))
    return out.replace("$$", "$")


def parse_dash_playlist(body: Union[str, bytes], url: str, itag: Optional[int]) -> Tuple[List[Segment], bool]:
    """Segments of one representation, from a SegmentList or a SegmentTemplate"""
    if isinstance(body, str):
        body = body.encode("utf-8")
    root = etree.fromstring(body, etree.XMLParser(resolve_entities=False))
    ended = root.get("type", "static") != "dynamic"
    total_ms = parse_iso_duration(root.get("mediaPresentationDuration"))

    for period in _children(root, "Period"):
        for adaptation in _children(period, "AdaptationSet"):
            for rep in _children(adaptation, "Representation"):
                if itag is not None and rep.get("id") != str(itag):
                    continue
                base = url
                for holder in (period, adaptation, rep):
                    base_url = _child(holder, "BaseURL")
                    if base_url is not None and base_url.text:
                        base = urljoin(base, base_url.text.strip())

                seg_list = _first_child("SegmentList", rep, adaptation)
                if seg_list is not None:
                    return _segment_list(seg_list, base), ended

                template = _first_child("SegmentTemplate", rep, adaptation)
                if template is not None:
                    return _segment_template(template, base, rep, total_ms), ended
    return [], ended


def _segment_list(seg_list: etree._Element, base: str) -> List[Segment]:
    timescale = int(seg_list.get("timescale", "1"))
    duration = int(seg_list.get("duration", "0"))
    start_number = int(seg_list.get("startNumber", "1"))

    segments: List[Segment] = []
    init = _child(seg_list, "Initialization")
    if init is not None and init.get("sourceURL"):
        segments.append(Segment(url=urljoin(base, init.get("sourceURL")), num=-1, init=True))

    for i, seg in enumerate(_children(seg_list, "SegmentURL")):
        segments.append(Segment(
            url=urljoin(base, seg.get("media", "")),
            num=start_number + i,
            duration_ms=duration / timescale * 1000,
            byte_range=f"bytes={seg.get('mediaRange')}" if seg.get("mediaRange") else None,
        ))
    return segments


def _segment_template(template: etree._Element, base: str, rep: etree._Element, total_ms: Optional[float]) -> List[Segment]:
    rep_id = rep.get("id", "")
    bandwidth = rep.get("bandwidth", "")
    timescale = int(template.get("timescale", "1"))
    start_number = int(template.get("startNumber", "1"))
    media = template.get("media", "")

    segments: List[Segment] = []
    if template.get("initialization"):
        segments.append(Segment(
            url=urljoin(base, _fill_template(template.get("initialization"), rep_id, bandwidth)),
            num=-1,
            init=True,
        ))

    timeline = _child(template, "SegmentTimeline")
    if timeline is not None:
        number, time = start_number, 0
        for s in _children(timeline, "S"):
            time = int(s.get("t", time))
            d = int(s.get("d", "0"))
            for _ in range(int(s.get("r", "0")) + 1):
                segments.append(Segment(
                    url=urljoin(base, _fill_template(media, rep_id, bandwidth, number, time)),
                    num=number,
                    duration_ms=d / timescale * 1000,
                ))
                number += 1
                time += d
        return segments

    duration = int(template.get("duration", "0"))
    if not duration or not total_ms:
        return segments
    seg_ms = duration / timescale * 1000
    for i in range(math.ceil(total_ms / seg_ms)):
        segments.append(Segment(
            url=urljoin(base, _fill_template(media, rep_id, bandwidth, start_number + i)),
            num=start_number + i,
            duration_ms=seg_ms,
        ))
    return segments


def start_index(segments: List[Segment], begin_ms: Optional[int], live: bool, live_buffer: int) -> int:
    """First media segment to emit for a relative begin or the live edge"""
    media = [s for s in segments if not s.init]
    if begin_ms is None and not live:
        return 0
    if begin_ms is None:
        begin_ms = max(0, int(sum(s.duration_ms for s in media)) - live_buffer)

    elapsed = 0.0
    for i, seg in enumerate(media):
        if elapsed + seg.duration_ms > begin_ms:
            return i
        elapsed += seg.duration_ms
    return max(0, len(media) - 1)


class SegmentedPlaylist:
    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        *,
        is_dash: bool = False,
        itag: Optional[int] = None,
        begin: Optional[Union[int, str]] = None,
        live_buffer: int = 20000,
        readahead: int = 3,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[Callable[[BaseException], None]] = None,
        refresh_interval: Optional[float] = None,
        sleep=asyncio.sleep,
    ):
        self.url = url
        self.client = client
        self.is_dash = is_dash
        self.itag = itag
        self.begin_ms = parse_timestamp(begin) if begin is not None else None
        self.live_buffer = live_buffer
        self.readahead = max(1, readahead)
        self.policy = policy or RetryPolicy.for_download()
        self.on_retry = on_retry
        self.refresh_interval = refresh_interval
        self._sleep = sleep

    def _should_retry(self, error: BaseException) -> bool:
        if not is_transient(error):
            return False
        if self.on_retry:
            self.on_retry(error)
        return True

    async def _get(self, url: str, byte_range: Optional[str] = None) -> bytes:
        async def fetch() -> bytes:
            try:
                resp = await self.client.get(url, headers=media_headers(url, byte_range=byte_range))
            except httpx.TransportError as e:
                raise RequestError(f"Segment request failed: {e}", url=url) from e
            if not resp.is_success:
                raise RequestError(f"Status code: {resp.status_code}", status_code=resp.status_code, url=url)
            return resp.content

        return await retry_async(fetch, self.policy, should_retry=self._should_retry, sleep=self._sleep)

    async def refresh(self) -> Tuple[List[Segment], bool]:
        body = await self._get(self.url)
        if self.is_dash:
            return parse_dash_playlist(body, self.url, self.itag)

        text = body.decode("utf-8", errors="replace")
        segments, ended, variant = parse_hls_playlist(text, self.url)
        if variant:
            logger.debug("Master playlist given, following its best variant")
            self.url = variant
            return await self.refresh()
        return segments, ended

    def _interval(self, segments: List[Segment]) -> float:
        if self.refresh_interval is not None:
            return self.refresh_interval
        durations = [s.duration_ms for s in segments if not s.init and s.duration_ms]
        return (durations[-1] / 1000 / 2) if durations else 1.0

    def __aiter__(self) -> AsyncIterator[SegmentData]:
        return self.iter_segments()

    async def iter_segments(self) -> AsyncIterator[SegmentData]:
        segments, ended = await self.refresh()
        inits = [s for s in segments if s.init]
        media = [s for s in segments if not s.init]
        media = media[start_index(segments, self.begin_ms, not ended, self.live_buffer):]

        queue: Deque[Segment] = deque(inits + media)
        last_num = media[-1].num if media else -1
        total = len(queue)
        index = 0
        idle = 0
        in_flight: Deque[Tuple[Segment, "asyncio.Task[bytes]"]] = deque()

        try:
            while True:
                while queue and len(in_flight) < self.readahead:
                    seg = queue.popleft()
                    in_flight.append((seg, asyncio.ensure_future(self._get(seg.url, seg.byte_range))))

                if in_flight:
                    seg, task = in_flight.popleft()
                    data = await task
                    index += 1
                    yield SegmentData(segment=seg, data=data, index=index, total=total)
                    continue

                if ended:
                    return

                await self._sleep(self._interval(segments))
                segments, ended = await self.refresh()
                fresh = [s for s in segments if not s.init and s.num > last_num]
                if fresh:
                    idle = 0
                    last_num = fresh[-1].num
                    queue.extend(fresh)
                    total += len(fresh)
                else:
                    idle += 1
                    if idle >= MAX_IDLE_REFRESHES:
                        logger.warning("Live playlist stopped updating, ending stream")
                        return
        finally:
            for _, task in in_flight:
                task.cancel()
