"""
DASH and HLS manifest scanning.

Both produce bare formats (itag, url and whatever the manifest states);
``add_format_meta`` fills in the rest from the itag table.
"""
import logging
import re
from typing import Dict, Optional

from lxml import etree

from ytstream.core.errors import RequestError
from ytstream.infra.http import PageFetcher
from ytstream.models.format import Format
from ytstream.utils.locale import safe_url_for_log

logger = logging.getLogger(__name__)

HLS_ITAG = re.compile(r"/itag/(\d+)/")
ABSOLUTE_URL = re.compile(r"^https?://")


def _frame_rate(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    if "/" in value:
        num, den = value.split("/", 1)
        try:
            return round(int(num) / int(den))
        except (ValueError, ZeroDivisionError):
            return None
    try:
        return round(float(value))
    except ValueError:
        return None


def dash_format_key(url: str, itag: int) -> str:
    """Representations share the manifest URL, so the itag is part of the key"""
    return f"{url}#itag={itag}"


class DashManifestScanner:
    """
    Incremental MPD scan over an ``XMLPullParser``.
    Feed bytes as they arrive, then call ``close``.
    """

    def __init__(self, url: str):
        self.url = url
        self.formats: Dict[str, Format] = {}
        self._parser = etree.XMLPullParser(events=("start", "end"), resolve_entities=False)
        self._adaptation: Dict[str, str] = {}

    def feed(self, data: bytes) -> None:
        self._parser.feed(data)
        self._drain()

    def close(self) -> Dict[str, Format]:
        self._parser.close()
        self._drain()
        return self.formats

    def _drain(self) -> None:
        for event, elem in self._parser.read_events():
            name = etree.QName(elem).localname
            if event == "start" and name == "AdaptationSet":
                self._adaptation = dict(elem.attrib)
            elif event == "start" and name == "Representation":
                self._add_representation(elem.attrib)
            elif event == "end" and name in ("Representation", "AdaptationSet"):
                elem.clear()

    def _add_representation(self, attrs: Dict[str, str]) -> None:
        rep_id = attrs.get("id", "")
        if not rep_id.isdigit():
            return
        itag = int(rep_id)
        key = dash_format_key(self.url, itag)
        if key in self.formats:
            return

        mime = attrs.get("mimeType") or self._adaptation.get("mimeType") or ""
        codecs = attrs.get("codecs") or self._adaptation.get("codecs") or ""
        data = {
            "itag": itag,
            "url": self.url,
            "bitrate": attrs.get("bandwidth"),
            "mimeType": f'{mime}; codecs="{codecs}"',
        }
        if mime.startswith("video/") or attrs.get("height"):
            data.update(
                width=attrs.get("width"),
                height=attrs.get("height"),
                fps=_frame_rate(attrs.get("frameRate") or self._adaptation.get("frameRate")),
            )
        else:
            data["audioSampleRate"] = attrs.get("audioSamplingRate") or self._adaptation.get("audioSamplingRate")

        self.formats[key] = Format.model_validate({k: v for k, v in data.items() if v is not None})


async def get_dash_manifest(url: str, fetcher: PageFetcher) -> Dict[str, Format]:
    """Stream the MPD through the scanner, keyed by manifest URL + itag"""
    scanner = DashManifestScanner(url)
    try:
        async with fetcher.client.stream("GET", url, headers=fetcher.headers) as resp:
            if not resp.is_success:
                raise RequestError(f"Status code: {resp.status_code}", status_code=resp.status_code, url=url)
            async for chunk in resp.aiter_bytes():
                scanner.feed(chunk)
        return scanner.close()
    except etree.XMLSyntaxError as e:
        raise RequestError(f"Malformed DASH manifest at {safe_url_for_log(url)}: {e}", url=url) from e


def parse_hls_manifest(body: str) -> Dict[str, Format]:
    formats: Dict[str, Format] = {}
    for line in body.splitlines():
        line = line.strip()
        if not ABSOLUTE_URL.match(line):
            continue
        match = HLS_ITAG.search(line)
        if not match:
            continue
        formats[line] = Format.model_validate({
            "itag": int(match.group(1)),
            "url": line,
            "lastModified": "",
            "contentLength": "",
            "quality": "",
        })
    return formats


async def get_hls_manifest(url: str, fetcher: PageFetcher) -> Dict[str, Format]:
    body = await fetcher.request(url)
    return parse_hls_manifest(body)
