import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from ytstream.core.errors import FormatNotFoundError
from ytstream.models.format import Format
from ytstream.models.options import FormatOptions
from ytstream.services import itags
from ytstream.utils.parse import between

AUDIO_ENCODING_RANKS = ["mp4a", "mp3", "vorbis", "aac", "opus", "flac"]
VIDEO_ENCODING_RANKS = ["mp4v", "avc1", "Sorenson H.283", "MPEG-4 Visual", "VP8", "VP9", "H.264"]

LIVE_URL = re.compile(r"\bsource[/=]yt_live_broadcast\b")
HLS_URL = re.compile(r"/manifest/hls_(variant|playlist)/")
DASH_URL = re.compile(r"/manifest/dash/")
HLS_MIME_MARKERS = ("hls", "x-mpegURL", "application/vnd.apple.mpegurl")

FormatFilter = Union[str, Callable[[Format], bool]]

FILTERS = {
    "audioandvideo": lambda f: f.has_video and f.has_audio,
    "videoandaudio": lambda f: f.has_video and f.has_audio,
    "video": lambda f: f.has_video,
    "videoonly": lambda f: f.has_video and not f.has_audio,
    "audio": lambda f: f.has_audio,
    "audioonly": lambda f: f.has_audio and not f.has_video,
}


def _encoding_rank(ranks: Sequence[str], codecs: Optional[str]) -> int:
    if not codecs:
        return -1
    for i, encoding in enumerate(ranks):
        if encoding in codecs:
            return i
    return -1


def video_encoding_rank(fmt: Format) -> int:
    return _encoding_rank(VIDEO_ENCODING_RANKS, fmt.codecs)


def audio_encoding_rank(fmt: Format) -> int:
    return _encoding_rank(AUDIO_ENCODING_RANKS, fmt.codecs)


def estimate_audio_bitrate(fmt: Format) -> int:
    """Audio bitrate in kbps for formats that omit it"""
    if fmt.itag in itags.AUDIO_BITRATES:
        return itags.AUDIO_BITRATES[fmt.itag]
    if fmt.average_bitrate:
        if fmt.has_video:
            return int(fmt.average_bitrate * 0.1)
        return int(fmt.average_bitrate / 1000)
    return 64 if fmt.has_video else 128


def _carries_audio(fmt: Format) -> bool:
    return bool(
        fmt.audio_quality
        or fmt.audio_sample_rate
        or fmt.audio_channels
        or (fmt.mime_type or "").startswith("audio/")
    )


def add_format_meta(fmt: Format) -> Format:
    """Merge the itag table under the live fields and derive the flags"""
    table = {k: v for k, v in itags.FORMATS.get(fmt.itag, {}).items() if v is not None}
    enriched = Format.model_validate({**table, **fmt.model_dump(by_alias=True, exclude_none=True)})

    enriched.has_video = bool(enriched.quality_label)
    if not enriched.audio_bitrate and _carries_audio(enriched):
        enriched.audio_bitrate = estimate_audio_bitrate(enriched)
    enriched.has_audio = bool(enriched.audio_bitrate)

    mime_type = enriched.mime_type
    if mime_type:
        media_type = mime_type.split(";")[0]
        enriched.container = media_type.split("/")[1] if "/" in media_type else None
        enriched.codecs = between(mime_type, 'codecs="', '"') or None
    else:
        enriched.container = None
        enriched.codecs = None

    codec_list = enriched.codecs.split(", ") if enriched.codecs else []
    enriched.video_codec = codec_list[0] if enriched.has_video and codec_list else None
    enriched.audio_codec = codec_list[-1] if enriched.has_audio and codec_list else None

    url = enriched.url or ""
    enriched.is_live = bool(LIVE_URL.search(url))
    enriched.is_hls = bool(HLS_URL.search(url)) or any(m in (mime_type or "") for m in HLS_MIME_MARKERS)
    enriched.is_dash_mpd = bool(DASH_URL.search(url))
    return enriched


def stream_kind(fmt: Format) -> int:
    """3 audio+video, 2 video only, 1 audio only, 0 neither"""
    if fmt.has_video and fmt.has_audio:
        return 3
    if fmt.has_video:
        return 2
    if fmt.has_audio:
        return 1
    return 0


def rank_key(fmt: Format) -> Tuple:
    """Larger is better"""
    return (
        not fmt.is_hls,
        not fmt.is_dash_mpd,
        fmt.content_length_int > 0,
        stream_kind(fmt),
        fmt.quality_label_int,
        fmt.bitrate or 0,
        fmt.audio_bitrate or 0,
        video_encoding_rank(fmt),
        audio_encoding_rank(fmt),
    )


def video_key(fmt: Format) -> Tuple[int, int, int]:
    return fmt.quality_label_int, fmt.bitrate or 0, video_encoding_rank(fmt)


def audio_key(fmt: Format) -> Tuple[int, int]:
    return fmt.audio_bitrate or 0, audio_encoding_rank(fmt)


def sort_formats(formats: Iterable[Format], key: Callable[[Format], Tuple] = rank_key) -> List[Format]:
    """Most preferred first; equal formats keep their input order"""
    return sorted(formats, key=key, reverse=True)


def filter_formats(formats: Iterable[Format], filter: FormatFilter) -> List[Format]:
    if callable(filter):
        predicate = filter
    elif isinstance(filter, str) and filter in FILTERS:
        predicate = FILTERS[filter]
    elif isinstance(filter, str):
        raise ValueError(f"Given filter ({filter}) is not supported")
    else:
        raise TypeError(f"Filter must be a string or a callable, got {type(filter).__name__}")

    return [f for f in formats if f.url and predicate(f)]


def _format_by_quality(quality: Union[str, int, Sequence[Union[str, int]]], formats: List[Format]) -> Optional[Format]:
    wanted = [quality] if isinstance(quality, (str, int)) else list(quality)
    for itag in wanted:
        for fmt in formats:
            if str(fmt.itag) == str(itag):
                return fmt
    return None


def _pick_extreme(
    formats: List[Format],
    stream_filter: str,
    primary: Callable[[Format], Tuple],
    secondary: Callable[[Format], Tuple],
    highest: bool,
) -> Optional[Format]:
    """
    Best (or worst) format on one dimension. Ties go to the format that is
    cheapest on the other dimension, e.g. audio-only over a muxed format
    with the same audio.
    """
    pool = sort_formats(filter_formats(formats, stream_filter), key=primary)
    if not pool:
        return None
    target = primary(pool[0] if highest else pool[-1])
    ties = [f for f in pool if primary(f) == target]
    return min(ties, key=secondary)


def choose_format(
    formats: Iterable[Format],
    options: Optional[FormatOptions] = None,
    **overrides,
) -> Format:
    """
    Pick one format according to quality, filter or an explicit format.
    Raises FormatNotFoundError naming the quality when nothing matches.
    """
    if options is None:
        options = FormatOptions(**overrides)
    elif overrides:
        options = options.model_copy(update=overrides)

    if options.format is not None:
        if not options.format.url:
            raise ValueError("Invalid format given, did you use get_info()?")
        return options.format

    candidates = list(formats)
    if options.filter:
        candidates = filter_formats(candidates, options.filter)

    if any(f.is_hls for f in candidates):
        candidates = [f for f in candidates if f.is_hls or not f.is_live]

    candidates = sort_formats(candidates)
    quality = options.quality or "highest"

    chosen: Optional[Format]
    if quality == "highest":
        chosen = candidates[0] if candidates else None
    elif quality == "lowest":
        chosen = candidates[-1] if candidates else None
    elif quality in ("highestaudio", "lowestaudio"):
        chosen = _pick_extreme(
            candidates, "audio", audio_key,
            lambda f: (f.has_video,) + video_key(f),
            highest=quality == "highestaudio",
        )
    elif quality in ("highestvideo", "lowestvideo"):
        chosen = _pick_extreme(
            candidates, "video", video_key,
            lambda f: (f.has_audio,) + audio_key(f),
            highest=quality == "highestvideo",
        )
    else:
        chosen = _format_by_quality(quality, candidates)

    if chosen is None:
        raise FormatNotFoundError(quality)
    return chosen


def best_format(formats: Sequence[Format]) -> Optional[Format]:
    """First muxed format, else first video, else first audio, else the first one"""
    for predicate in (FILTERS["audioandvideo"], FILTERS["video"], FILTERS["audio"]):
        for fmt in formats:
            if predicate(fmt):
                return fmt
    return formats[0] if formats else None
