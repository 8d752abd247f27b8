"""
Resolve, decipher, rank and stream video formats.

    >>> import ytstream
    >>> info = await ytstream.get_info("https://www.youtube.com/watch?v=aqz-KE-bpKQ")
    >>> fmt = ytstream.choose_format(info.formats, quality="highestaudio")
    >>> data = await ytstream.download_from_info(info, format=fmt).read_all()
"""
from ytstream.core.errors import (
    FormatNotFoundError,
    InvalidVideoIdError,
    PlayabilityError,
    ProtocolError,
    RequestError,
    ResolutionError,
    YtStreamError,
)
from ytstream.models import DownloadOptions, Format, FormatOptions, InfoOptions, VideoInfo
from ytstream.services.formats import choose_format, filter_formats, sort_formats
from ytstream.services.info import get_basic_info, get_info
from ytstream.services.stream import DownloadStream, download, download_from_info
from ytstream.utils.url import get_url_video_id, get_video_id, validate_id, validate_url
from ytstream.version import __version__

__all__ = [
    "DownloadOptions",
    "DownloadStream",
    "Format",
    "FormatNotFoundError",
    "FormatOptions",
    "InfoOptions",
    "InvalidVideoIdError",
    "PlayabilityError",
    "ProtocolError",
    "RequestError",
    "ResolutionError",
    "VideoInfo",
    "YtStreamError",
    "__version__",
    "choose_format",
    "download",
    "download_from_info",
    "filter_formats",
    "get_basic_info",
    "get_info",
    "get_url_video_id",
    "get_video_id",
    "sort_formats",
    "validate_id",
    "validate_url",
]
