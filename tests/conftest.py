import json
import os
import re
from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qs, quote, urlsplit

os.environ.setdefault("YTSTREAM_NO_UPDATE", "1")

import httpx
import pytest
import pytest_asyncio

from ytstream.config.settings import config
from ytstream.infra.http import create_http_client, watch_page_cache
from ytstream.services.cipher import cipher_cache
from ytstream.services.info import info_cache

VIDEO_ID = "aqz-KE-bpKQ"
PLAYER_PATH = "/s/player/abc123/player_ias.vflset/en_US/base.js"

HELPER = (
    "var Xy={ab:function(a,b){a.splice(0,b)},cd:function(a){a.reverse()},"
    "ef:function(a,b){var c=a[0];a[0]=a[b%a.length];a[b%a.length]=c}};"
)
DECIPHER = 'Qa=function(a){a=a.split("");Xy.cd(a,1);Xy.ab(a,2);Xy.ef(a,3);return a.join("")};'
N_TRANSFORM = (
    'Yn=function(a){var b=a.split("");b.reverse();return b.join("")+"_x"};\n'
    "var Zn=[Yn];\n"
    'Rb=function(a){var b;(b=a.get("n"))&&(b=Zn[0](b),a.set("n",b))};'
)

PLAYER_SCRIPT = "\n".join([
    "var _yt_player={};",
    HELPER,
    DECIPHER,
    N_TRANSFORM,
    "var cfg={signatureTimestamp:19999};",
])

PLAYER_SCRIPT_WITHOUT_N = "\n".join(["var _yt_player={};", HELPER, DECIPHER, "var cfg={sts:19999};"])

# Expected results of the fake transforms
SIGNATURE = "ABCDEFGHIJ"
DECIPHERED_SIGNATURE = "EGFHDCBA"
N_VALUE = "abc123"
TRANSFORMED_N = "321cba_x"

CLIENT_NAMES = {
    "WEB": "WEB",
    "WEB_EMBEDDED_PLAYER": "WEB_EMBEDDED",
    "TVHTML5": "TV",
    "IOS": "IOS",
    "ANDROID": "ANDROID",
}


def ciphered_format(itag: int = 18, host: str = "rr1.googlevideo.com", **fields) -> dict:
    media_url = f"https://{host}/videoplayback?itag={itag}&n={N_VALUE}&source=youtube"
    data = {
        "itag": itag,
        "mimeType": 'video/mp4; codecs="avc1.42001E, mp4a.40.2"',
        "bitrate": 500000,
        "qualityLabel": "360p",
        "audioQuality": "AUDIO_QUALITY_LOW",
        "contentLength": "4000",
        "signatureCipher": f"s={SIGNATURE}&sp=sig&url={quote(media_url, safe='')}",
    }
    data.update(fields)
    return data


def plain_format(itag: int = 140, host: str = "rr2.googlevideo.com", **fields) -> dict:
    data = {
        "itag": itag,
        "url": f"https://{host}/videoplayback?itag={itag}&n={N_VALUE}&source=youtube",
        "mimeType": 'audio/mp4; codecs="mp4a.40.2"',
        "bitrate": 130000,
        "averageBitrate": 129000,
        "audioQuality": "AUDIO_QUALITY_MEDIUM",
        "contentLength": "2500",
    }
    data.update(fields)
    return data


def player_response(
    video_id: str = VIDEO_ID,
    status: str = "OK",
    reason: Optional[str] = None,
    formats: Optional[List[dict]] = None,
    adaptive: Optional[List[dict]] = None,
    **streaming,
) -> dict:
    playability = {"status": status}
    if reason:
        playability["reason"] = reason
    return {
        "playabilityStatus": playability,
        "streamingData": {"formats": formats or [], "adaptiveFormats": adaptive or [], **streaming},
        "videoDetails": {
            "videoId": video_id,
            "title": "Test video",
            "lengthSeconds": "212",
            "author": "Tester",
            "shortDescription": "A video used in tests",
            "thumbnail": {"thumbnails": [{"url": "https://i.ytimg.com/vi/x/default.jpg"}]},
        },
        "microformat": {"playerMicroformatRenderer": {"category": "Music", "uploadDate": "2024-01-01"}},
    }


def watch_page(response: dict, with_player: bool = True) -> str:
    player_tag = f'<script src="{PLAYER_PATH}" name="player_ias/base"></script>' if with_player else ""
    return (
        "<html><head>"
        f"{player_tag}"
        f"<script>var ytInitialPlayerResponse = {json.dumps(response)};var meta = 1;</script>"
        '<script>var ytInitialData = {"contents": {"twoColumnWatchNextResults": {}}};</script>'
        "</head><body></body></html>"
    )


def media_bytes(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


class FakeYouTube:
    """Routes every request a resolution and download makes"""

    def __init__(self):
        self.web_response = player_response(formats=[ciphered_format()])
        self.client_responses: Dict[str, Callable[[], httpx.Response]] = {}
        self.player_script = PLAYER_SCRIPT
        self.with_player_tag = True
        self.media: Dict[str, bytes] = {}
        self.media_failures: Dict[str, int] = {}
        self.extra_routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def player_calls(self) -> List[str]:
        names = []
        for request in self.calls:
            if request.url.path == "/youtubei/v1/player":
                body = json.loads(request.content)
                names.append(CLIENT_NAMES[body["context"]["client"]["clientName"]])
        return names

    def media_requests(self, host: str) -> List[httpx.Request]:
        return [r for r in self.calls if r.url.host == host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = request.url

        for prefix, route in self.extra_routes.items():
            if str(url).startswith(prefix):
                return route(request)

        if url.host == "www.youtube.com" and url.path == "/watch":
            return httpx.Response(200, text=watch_page(self.web_response, self.with_player_tag),
                                  headers={"content-type": "text/html"})
        if url.host == "www.youtube.com" and url.path.startswith("/embed/"):
            return httpx.Response(200, text=f'<script>var cfg = {{"jsUrl":"{PLAYER_PATH}"}};</script>',
                                  headers={"content-type": "text/html"})
        if url.path == PLAYER_PATH:
            return httpx.Response(200, text=self.player_script, headers={"content-type": "text/javascript"})
        if url.path == "/youtubei/v1/player":
            body = json.loads(request.content)
            name = CLIENT_NAMES[body["context"]["client"]["clientName"]]
            responder = self.client_responses.get(name)
            if responder is None:
                return httpx.Response(400, json={"error": {"code": 400}})
            return responder()
        if url.host.endswith("googlevideo.com"):
            return self._media(request)
        return httpx.Response(404)

    def _media(self, request: httpx.Request) -> httpx.Response:
        key = request.url.host
        if self.media_failures.get(key):
            self.media_failures[key] -= 1
            return httpx.Response(503)

        data = self.media.get(key, b"")
        header = request.headers.get("range")
        if header:
            match = re.match(r"bytes=(\d+)-(\d*)", header)
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else len(data) - 1
            return httpx.Response(206, content=data[start:end + 1],
                                  headers={"content-range": f"bytes {start}-{end}/{len(data)}"})
        return httpx.Response(200, content=data)


def query(url: str, name: str) -> Optional[str]:
    values = parse_qs(urlsplit(url).query).get(name)
    return values[0] if values else None


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(config.retry, "backoff_inc", 0.0)
    monkeypatch.setattr(config.download, "backoff_inc", 0.0)
    info_cache.clear()
    cipher_cache.clear()
    watch_page_cache.clear()
    yield
    info_cache.clear()
    cipher_cache.clear()
    watch_page_cache.clear()


@pytest.fixture
def fake_youtube():
    return FakeYouTube()


@pytest_asyncio.fixture
async def http_client(fake_youtube):
    client = create_http_client(transport=httpx.MockTransport(fake_youtube.handler))
    yield client
    await client.aclose()
