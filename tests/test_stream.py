import httpx
import pytest

from ytstream.core.errors import FormatNotFoundError, PlayabilityError
from ytstream.models.format import Format
from ytstream.models.info import VideoInfo
from ytstream.models.options import ByteRange, DownloadOptions
from ytstream.services.formats import add_format_meta
from ytstream.services.info import get_basic_info, get_info
from ytstream.services.stream import DownloadStream, download, download_from_info

from .conftest import VIDEO_ID, media_bytes, plain_format, player_response

MUXED_HOST = "rr1.googlevideo.com"
AUDIO_HOST = "rr2.googlevideo.com"
SEGMENT_BASE = "https://manifest.googlevideo.com/api/manifest/hls_playlist/itag/95/"

PLAYLIST = """#EXTM3U
#EXT-X-TARGETDURATION:2
#EXT-X-MEDIA-SEQUENCE:0
#EXTINF:2.0,
seg0.ts
#EXTINF:2.0,
seg1.ts
#EXTINF:2.0,
seg2.ts
#EXT-X-ENDLIST
"""


class TruncatedStream(httpx.AsyncByteStream):
    def __init__(self, data: bytes):
        self.data = data

    async def __aiter__(self):
        yield self.data
        raise httpx.ReadError("connection reset")


def ranges(requests):
    return [r.headers.get("range") for r in requests]


def record(stream: DownloadStream, *events):
    seen = {event: [] for event in events}
    for event in events:
        stream.on(event, lambda *args, _event=event: seen[_event].append(args))
    return seen


@pytest.fixture
def media(fake_youtube):
    fake_youtube.media[MUXED_HOST] = media_bytes(4000)
    fake_youtube.media[AUDIO_HOST] = media_bytes(2500)
    fake_youtube.client_responses["IOS"] = lambda: httpx.Response(
        200, json=player_response(adaptive=[plain_format()]),
    )
    return fake_youtube


def hls_info(fake_youtube, failures=0):
    state = {"failures": failures}

    def route(request):
        name = request.url.path.rsplit("/", 1)[-1]
        if name == "index.m3u8":
            return httpx.Response(200, text=PLAYLIST)
        if name == "seg1.ts" and state["failures"]:
            state["failures"] -= 1
            return httpx.Response(503)
        return httpx.Response(200, content=name.split(".")[0].encode())

    fake_youtube.extra_routes[SEGMENT_BASE] = route
    fmt = add_format_meta(Format(itag=95, url=SEGMENT_BASE + "index.m3u8"))
    return VideoInfo(full=True, player_response=player_response(), formats=[fmt])


@pytest.mark.asyncio
async def test_muxed_format_in_one_request(media, http_client):
    stream = download(VIDEO_ID, DownloadOptions(client=http_client, player_clients=["ANDROID"]))
    events = record(stream, "info", "progress", "end")

    data = await stream.read_all()

    assert data == media_bytes(4000)
    assert ranges(media.media_requests(MUXED_HOST)) == [None]
    info, fmt = events["info"][0]
    assert fmt.itag == 18
    assert info.selected_format.itag == 18
    assert events["progress"][-1][1:] == (4000, 4000)
    assert len(events["end"]) == 1


@pytest.mark.asyncio
async def test_adaptive_format_is_downloaded_in_sequential_chunks(media, http_client):
    options = DownloadOptions(client=http_client, player_clients=["IOS"], dl_chunk_size=1000)
    stream = download(VIDEO_ID, options)
    events = record(stream, "progress")

    assert await stream.read_all() == media_bytes(2500)
    assert ranges(media.media_requests(AUDIO_HOST)) == ["bytes=0-999", "bytes=1000-1999", "bytes=2000-2499"]
    assert events["progress"][-1][1:] == (2500, 2500)


@pytest.mark.asyncio
async def test_chunking_can_be_disabled(media, http_client):
    options = DownloadOptions(client=http_client, player_clients=["IOS"], dl_chunk_size=0)

    assert await download(VIDEO_ID, options).read_all() == media_bytes(2500)
    assert ranges(media.media_requests(AUDIO_HOST)) == [None]


@pytest.mark.asyncio
async def test_byte_range(media, http_client):
    options = DownloadOptions(client=http_client, player_clients=["ANDROID"], range=ByteRange(start=100, end=199))

    assert await download(VIDEO_ID, options).read_all() == media_bytes(4000)[100:200]
    assert ranges(media.media_requests(MUXED_HOST)) == ["bytes=100-199"]


@pytest.mark.asyncio
async def test_server_errors_are_retried(media, http_client):
    media.media_failures[MUXED_HOST] = 2
    stream = download(VIDEO_ID, DownloadOptions(client=http_client, player_clients=["ANDROID"]))
    events = record(stream, "retry")

    assert await stream.read_all() == media_bytes(4000)
    assert [args[0] for args in events["retry"]] == [1, 2]


@pytest.mark.asyncio
async def test_truncated_transfer_reconnects_from_last_byte(media, http_client):
    data = media_bytes(4000)
    cut = {"done": False}

    def truncating(request):
        if not cut["done"]:
            cut["done"] = True
            return httpx.Response(200, stream=TruncatedStream(data[:1500]))
        start = int(request.headers["range"].split("=")[1].rstrip("-"))
        return httpx.Response(206, content=data[start:])

    media.extra_routes[f"https://{MUXED_HOST}/"] = truncating
    stream = download(VIDEO_ID, DownloadOptions(client=http_client, player_clients=["ANDROID"]))
    events = record(stream, "reconnect")

    assert await stream.read_all() == data
    assert ranges(media.media_requests(MUXED_HOST)) == [None, "bytes=1500-"]
    assert [args[0] for args in events["reconnect"]] == [1]


@pytest.mark.asyncio
async def test_destroy_from_info_listener_stops_download(media, http_client):
    stream = download(VIDEO_ID, DownloadOptions(client=http_client, player_clients=["ANDROID"]))
    stream.on("info", lambda *args: stream.destroy())
    events = record(stream, "progress", "end")

    assert await stream.read_all() == b""
    assert stream.destroyed
    assert media.media_requests(MUXED_HOST) == []
    assert events == {"progress": [], "end": []}


@pytest.mark.asyncio
async def test_destroy_mid_transfer_stops_progress(media, http_client):
    options = DownloadOptions(
        client=http_client, player_clients=["IOS"], dl_chunk_size=1000, high_water_mark=1,
    )
    stream = download(VIDEO_ID, options)
    events = record(stream, "progress")

    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
        stream.destroy()

    assert chunks == [media_bytes(1000)]
    assert len(events["progress"]) == 1
    assert len(media.media_requests(AUDIO_HOST)) <= 2


@pytest.mark.asyncio
async def test_unknown_quality_surfaces_as_stream_error(media, http_client):
    stream = download(VIDEO_ID, DownloadOptions(client=http_client, player_clients=["ANDROID"], quality=999))
    events = record(stream, "error")

    with pytest.raises(FormatNotFoundError):
        await stream.read_all()
    assert isinstance(events["error"][0][0], FormatNotFoundError)


@pytest.mark.asyncio
async def test_download_from_info_checks_playability():
    info = VideoInfo(full=True, player_response=player_response(status="UNPLAYABLE", reason="Nope"))

    with pytest.raises(PlayabilityError, match="Nope"):
        await download_from_info(info).read_all()


@pytest.mark.asyncio
async def test_download_from_info_needs_full_info(fake_youtube, http_client):
    info = await get_basic_info(VIDEO_ID, DownloadOptions(client=http_client).info_options())

    with pytest.raises(ValueError, match="get_info"):
        download_from_info(info)


@pytest.mark.asyncio
async def test_download_from_resolved_info_with_explicit_format(media, http_client):
    options = DownloadOptions(client=http_client, player_clients=["IOS"])
    info = await get_info(VIDEO_ID, options.info_options())
    audio = next(f for f in info.formats if f.itag == 140)

    data = await download_from_info(info, client=http_client, format=audio, dl_chunk_size=0).read_all()

    assert data == media_bytes(2500)


@pytest.mark.asyncio
async def test_hls_segments_in_order(fake_youtube, http_client):
    info = hls_info(fake_youtube)
    stream = download_from_info(info, client=http_client)
    events = record(stream, "progress")

    assert await stream.read_all() == b"seg0seg1seg2"
    assert [args[1:] for args in events["progress"]] == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_hls_begin_skips_segments(fake_youtube, http_client):
    info = hls_info(fake_youtube)

    assert await download_from_info(info, client=http_client, begin="2s").read_all() == b"seg1seg2"


@pytest.mark.asyncio
async def test_hls_segment_retry(fake_youtube, http_client):
    info = hls_info(fake_youtube, failures=1)
    stream = download_from_info(info, client=http_client)
    events = record(stream, "retry")

    assert await stream.read_all() == b"seg0seg1seg2"
    assert len(events["retry"]) == 1
