import httpx
import pytest

from ytstream.services.segments import (
    Segment,
    SegmentedPlaylist,
    parse_dash_playlist,
    parse_hls_playlist,
    parse_iso_duration,
    start_index,
)

BASE = "https://manifest.googlevideo.com/api/manifest/"

MPD_TIMELINE = """<?xml version="1.0"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011" type="dynamic">
  <Period>
    <BaseURL>https://rr1.googlevideo.com/videoplayback/</BaseURL>
    <AdaptationSet mimeType="video/mp4">
      <SegmentTemplate timescale="1000" startNumber="5" initialization="init/$RepresentationID$.mp4"
                       media="sq/$Number%05d$/t/$Time$">
        <SegmentTimeline>
          <S t="0" d="2000" r="1"/>
          <S d="1000"/>
        </SegmentTimeline>
      </SegmentTemplate>
      <Representation id="136" bandwidth="2000000"/>
      <Representation id="137" bandwidth="4000000"/>
    </AdaptationSet>
  </Period>
</MPD>
"""

MPD_LIST = """<MPD xmlns="urn:mpeg:dash:schema:mpd:2011" type="static">
  <Period>
    <AdaptationSet>
      <Representation id="140" bandwidth="130000">
        <BaseURL>https://rr2.googlevideo.com/videoplayback/itag/140/</BaseURL>
        <SegmentList timescale="1000" duration="5000">
          <Initialization sourceURL="sq/0"/>
          <SegmentURL media="sq/1"/>
          <SegmentURL media="sq/2" mediaRange="100-199"/>
        </SegmentList>
      </Representation>
    </AdaptationSet>
  </Period>
</MPD>
"""

MPD_DURATION = """<MPD xmlns="urn:mpeg:dash:schema:mpd:2011" mediaPresentationDuration="PT5S">
  <Period>
    <AdaptationSet>
      <SegmentTemplate timescale="1" duration="2" media="$Bandwidth$/$Number$.m4s"/>
      <Representation id="251" bandwidth="160000"/>
    </AdaptationSet>
  </Period>
</MPD>
"""


MPD_PREFIXED = """<?xml version="1.0" encoding="UTF-8"?>
<dash:MPD xmlns:dash="urn:mpeg:dash:schema:mpd:2011" type="static">
  <!-- generated -->
  <dash:Period>
    <dash:AdaptationSet>
      <!-- audio -->
      <dash:Representation id="140" bandwidth="130000">
        <dash:SegmentList timescale="1000" duration="5000">
          <dash:SegmentURL media="sq/1"/>
        </dash:SegmentList>
      </dash:Representation>
    </dash:AdaptationSet>
  </dash:Period>
</dash:MPD>
"""


@pytest.mark.parametrize("value, expected", [
    ("PT5S", 5000),
    ("PT1H2M3.5S", 3723500),
    ("P1DT1S", 86401000),
    ("PT0.5S", 500),
    ("P1M", 31 * 86400 * 1000),
    ("bogus", None),
    (None, None),
])
def test_parse_iso_duration(value, expected):
    assert parse_iso_duration(value) == expected


def test_hls_byte_ranges_and_init_section():
    body = (
        "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:7\n#EXT-X-MAP:URI=\"init.mp4\"\n"
        "#EXTINF:4.0,\n#EXT-X-BYTERANGE:100@0\nmedia.mp4\n"
        "#EXTINF:4.0,\n#EXT-X-BYTERANGE:50\nmedia.mp4\n"
    )
    segments, ended, variant = parse_hls_playlist(body, BASE + "a/index.m3u8")

    assert not ended and variant is None
    assert segments[0].init and segments[0].url == BASE + "a/init.mp4"
    assert [s.num for s in segments[1:]] == [7, 8]
    assert [s.byte_range for s in segments[1:]] == ["bytes=0-99", "bytes=100-149"]


def test_hls_master_playlist_points_at_best_variant():
    body = (
        "#EXTM3U\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=800000\nlow/index.m3u8\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=1500000\nhigh/index.m3u8\n"
    )
    segments, _, variant = parse_hls_playlist(body, BASE + "master.m3u8")
    assert segments == []
    assert variant == BASE + "high/index.m3u8"


def test_dash_segment_timeline():
    segments, ended = parse_dash_playlist(MPD_TIMELINE, BASE + "dash", 137)

    assert not ended
    assert segments[0].init
    assert segments[0].url == "https://rr1.googlevideo.com/videoplayback/init/137.mp4"
    assert [s.url.rsplit("/videoplayback/", 1)[1] for s in segments[1:]] == [
        "sq/00005/t/0", "sq/00006/t/2000", "sq/00007/t/4000",
    ]
    assert [s.duration_ms for s in segments[1:]] == [2000, 2000, 1000]


def test_dash_segment_list():
    segments, ended = parse_dash_playlist(MPD_LIST, BASE + "dash", 140)

    assert ended
    assert [s.url for s in segments] == [
        "https://rr2.googlevideo.com/videoplayback/itag/140/sq/0",
        "https://rr2.googlevideo.com/videoplayback/itag/140/sq/1",
        "https://rr2.googlevideo.com/videoplayback/itag/140/sq/2",
    ]
    assert segments[2].byte_range == "bytes=100-199"


def test_dash_template_with_fixed_duration():
    segments, _ = parse_dash_playlist(MPD_DURATION, BASE + "dash/", 251)
    assert [s.url for s in segments] == [BASE + "dash/160000/%d.m4s" % n for n in (1, 2, 3)]


def test_dash_unknown_representation():
    assert parse_dash_playlist(MPD_LIST, BASE + "dash", 999) == ([], True)


def test_dash_prefixed_namespace_and_comments():
    segments, ended = parse_dash_playlist(MPD_PREFIXED, BASE + "dash/", 140)

    assert ended
    assert [s.url for s in segments] == [BASE + "dash/sq/1"]
    assert segments[0].duration_ms == 5000


def test_start_index():
    segments = [Segment(url="i", num=-1, init=True)] + [
        Segment(url=str(n), num=n, duration_ms=2000) for n in range(10)
    ]
    assert start_index(segments, None, False, 20000) == 0
    assert start_index(segments, 4500, False, 20000) == 2
    assert start_index(segments, None, True, 6000) == 7
    assert start_index(segments, 99999, False, 0) == 9


@pytest.mark.asyncio
async def test_live_playlist_is_refreshed_until_it_ends():
    playlists = [
        "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:0\n#EXTINF:2,\ns0\n#EXTINF:2,\ns1\n",
        "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:1\n#EXTINF:2,\ns1\n#EXTINF:2,\ns2\n#EXT-X-ENDLIST\n",
    ]
    served = []

    def handler(request):
        name = request.url.path.rsplit("/", 1)[-1]
        if name == "live.m3u8":
            body = playlists[min(len(served), len(playlists) - 1)]
            served.append(body)
            return httpx.Response(200, text=body)
        return httpx.Response(200, content=name.encode())

    async def no_sleep(_):
        return None

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        playlist = SegmentedPlaylist(BASE + "live.m3u8", client, live_buffer=0, sleep=no_sleep)
        pieces = [piece async for piece in playlist]

    assert [p.data for p in pieces] == [b"s1", b"s2"]
    assert len(served) == 2


@pytest.mark.asyncio
async def test_stalled_live_playlist_ends(monkeypatch):
    monkeypatch.setattr("ytstream.services.segments.MAX_IDLE_REFRESHES", 3)
    body = "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:0\n#EXTINF:2,\ns0\n"
    refreshes = []

    def handler(request):
        if request.url.path.endswith(".m3u8"):
            refreshes.append(1)
            return httpx.Response(200, text=body)
        return httpx.Response(200, content=b"x")

    async def no_sleep(_):
        return None

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        playlist = SegmentedPlaylist(BASE + "live.m3u8", client, sleep=no_sleep)
        pieces = [piece async for piece in playlist]

    assert len(pieces) == 1
    assert len(refreshes) == 4
