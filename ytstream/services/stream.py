"""
Byte streams for a chosen format.

``download`` and ``download_from_info`` return a ``DownloadStream`` right
away; resolution and transfer run in a background task feeding it.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine, Dict, List, Optional

import httpx

from ytstream.core.errors import RequestError, ResolutionError, play_error
from ytstream.infra.http import get_http_client
from ytstream.models.format import Format
from ytstream.models.info import VideoInfo
from ytstream.models.options import DownloadOptions
from ytstream.services.formats import choose_format
from ytstream.services.info import get_info
from ytstream.services.segments import SegmentedPlaylist
from ytstream.utils.http_retry import RetryPolicy, media_headers
from ytstream.utils.locale import safe_url_for_log
from ytstream.utils.parse import parse_int, parse_timestamp
from ytstream.utils.ranges import plan_byte_ranges, range_header

logger = logging.getLogger(__name__)

_EOF = object()


class DownloadStream:
    """
    Async iterator of ``bytes`` with event listeners.

    The producer waits once ``high_water_mark`` bytes are buffered and
    unread. ``destroy()`` is synchronous: it stops the producer and ends
    iteration, and no data or progress is delivered afterwards.
    """
    EVENTS = ("info", "progress", "response", "retry", "reconnect", "error", "end")

    def __init__(self, high_water_mark: int = 512 * 1024):
        self.high_water_mark = high_water_mark
        self.destroyed = False
        self.downloaded = 0
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._buffered = 0
        self._space = asyncio.Event()
        self._space.set()
        self._task: Optional["asyncio.Task[None]"] = None
        self._error: Optional[BaseException] = None

    def on(self, event: str, callback: Callable[..., Any]) -> "DownloadStream":
        if event not in self.EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)
        return self

    def emit(self, event: str, *args: Any) -> None:
        if self.destroyed and event in ("progress", "response"):
            return
        for callback in list(self._listeners[event]):
            callback(*args)

    def start(self, producer: Coroutine[Any, Any, None]) -> "DownloadStream":
        self._task = asyncio.get_running_loop().create_task(self._run(producer))
        return self

    async def _run(self, producer: Coroutine[Any, Any, None]) -> None:
        try:
            await producer
        except asyncio.CancelledError:
            return
        except Exception as e:
            if self.destroyed:
                return
            logger.debug(f"Download failed: {e}")
            self._error = e
            self.emit("error", e)
            self._queue.put_nowait(_EOF)
            return

        if not self.destroyed:
            self.emit("end")
            self._queue.put_nowait(_EOF)

    async def push(self, data: bytes) -> None:
        """Buffer a piece of output, waiting while the buffer is full"""
        while self._buffered >= self.high_water_mark and not self.destroyed:
            self._space.clear()
            await self._space.wait()
        if self.destroyed or not data:
            return
        self._buffered += len(data)
        self._queue.put_nowait(data)

    def destroy(self, error: Optional[BaseException] = None) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        self._error = error
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._space.set()
        self._queue.put_nowait(_EOF)

    def __aiter__(self) -> "DownloadStream":
        return self

    async def __anext__(self) -> bytes:
        if self.destroyed and self._error is None:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _EOF or self.destroyed:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        self._buffered -= len(item)
        if self._buffered < self.high_water_mark:
            self._space.set()
        return item

    async def read_all(self) -> bytes:
        return b"".join([chunk async for chunk in self])


async def _fetch_range(
    stream: DownloadStream,
    client: httpx.AsyncClient,
    url: str,
    start: Optional[int],
    end: Optional[int],
    total: Optional[int],
    options: DownloadOptions,
    sleep=asyncio.sleep,
) -> None:
    """
    One request, optionally ranged. A transfer cut short reconnects from the
    last received byte; 5xx and transport errors before any byte retry.
    """
    policy = RetryPolicy.for_download()
    received = 0
    retries = 0
    reconnects = 0

    while True:
        byte_range = None
        if start is not None or end is not None or received:
            byte_range = range_header((start or 0) + received, end)

        try:
            async with client.stream("GET", url, headers=media_headers(url, byte_range=byte_range)) as resp:
                if not resp.is_success:
                    raise RequestError(f"Status code: {resp.status_code}", status_code=resp.status_code, url=url)
                stream.emit("response", resp)

                expected = parse_int(resp.headers.get("content-length"))
                if total is None and expected is not None:
                    total = expected + received
                got = 0
                async for chunk in resp.aiter_bytes():
                    if stream.destroyed:
                        return
                    got += len(chunk)
                    received += len(chunk)
                    stream.downloaded += len(chunk)
                    await stream.push(chunk)
                    stream.emit("progress", len(chunk), stream.downloaded, total)

                if expected is not None and got < expected:
                    raise RequestError(f"Transfer ended after {got} of {expected} bytes", url=url)
                return
        except httpx.TransportError as e:
            error = RequestError(f"Request to {safe_url_for_log(url)} failed: {e}", url=url)
        except RequestError as e:
            if not e.transient:
                raise
            error = e

        if received:
            reconnects += 1
            if reconnects > options.max_reconnects:
                raise error
            stream.emit("reconnect", reconnects, error)
            await sleep(policy.delay(reconnects))
        else:
            retries += 1
            if retries > policy.retries:
                raise error
            stream.emit("retry", retries, error)
            await sleep(policy.delay(retries))


async def _download_progressive(
    stream: DownloadStream,
    client: httpx.AsyncClient,
    fmt: Format,
    options: DownloadOptions,
) -> None:
    start = options.range.start if options.range else None
    end = options.range.end if options.range else None
    length = fmt.content_length_int or None

    adaptive = not (fmt.has_audio and fmt.has_video)
    if options.dl_chunk_size and adaptive and length:
        last = min(end, length - 1) if end is not None else length - 1
        total = last - (start or 0) + 1
        # Strictly sequential: the next window is requested once this one is done
        for window_start, window_end in plan_byte_ranges(start or 0, last, options.dl_chunk_size):
            if stream.destroyed:
                return
            await _fetch_range(stream, client, fmt.url, window_start, window_end, total, options)
        return

    url = fmt.url
    if options.begin is not None:
        url += f"&begin={parse_timestamp(options.begin)}"
    await _fetch_range(stream, client, url, start, end, None, options)


async def _download_segments(
    stream: DownloadStream,
    client: httpx.AsyncClient,
    fmt: Format,
    options: DownloadOptions,
) -> None:
    retries = 0

    def on_retry(error: BaseException) -> None:
        nonlocal retries
        retries += 1
        stream.emit("retry", retries, error)

    playlist = SegmentedPlaylist(
        fmt.url,
        client,
        is_dash=fmt.is_dash_mpd,
        itag=fmt.itag,
        begin=options.begin,
        live_buffer=options.live_buffer,
        readahead=options.chunk_readahead,
        on_retry=on_retry,
    )
    async for piece in playlist:
        if stream.destroyed:
            return
        stream.downloaded += len(piece.data)
        await stream.push(piece.data)
        stream.emit("progress", len(piece.data), piece.index, piece.total)


async def _stream_from_info(stream: DownloadStream, info: VideoInfo, options: DownloadOptions) -> None:
    error = play_error(info.player_response)
    if error:
        raise error
    if not info.formats:
        raise ResolutionError("This video is unavailable", info.video_id)

    fmt = choose_format(info.formats, options.format_options())
    stream.emit("info", info.model_copy(update={"selected_format": fmt}), fmt)
    if stream.destroyed:
        return

    client = options.client or get_http_client()
    if fmt.is_hls or fmt.is_dash_mpd:
        await _download_segments(stream, client, fmt, options)
    else:
        await _download_progressive(stream, client, fmt, options)


def download_from_info(info: VideoInfo, options: Optional[DownloadOptions] = None, **kwargs: Any) -> DownloadStream:
    """Stream a format of an already resolved video; needs a running loop"""
    if not info.full:
        raise ValueError("download_from_info() needs info from get_info(), not get_basic_info()")
    options = options or DownloadOptions(**kwargs)
    stream = DownloadStream(options.high_water_mark)
    return stream.start(_stream_from_info(stream, info, options))


def download(link: str, options: Optional[DownloadOptions] = None, **kwargs: Any) -> DownloadStream:
    """Resolve ``link`` in the background and stream the chosen format"""
    options = options or DownloadOptions(**kwargs)
    stream = DownloadStream(options.high_water_mark)

    async def produce() -> None:
        info = await get_info(link, options.info_options())
        if stream.destroyed:
            return
        await _stream_from_info(stream, info, options)

    return stream.start(produce())
