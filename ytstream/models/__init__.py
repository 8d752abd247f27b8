from .format import Format
from .info import VideoInfo
from .options import ByteRange, DownloadOptions, FormatOptions, InfoOptions
from .request import DownloadRequest, FormatsRequest, InfoRequest
from .response import BasicInfoResponse, FormatsResponse, InfoResponse

__all__ = [
    "BasicInfoResponse",
    "ByteRange",
    "DownloadOptions",
    "DownloadRequest",
    "Format",
    "FormatOptions",
    "FormatsRequest",
    "FormatsResponse",
    "InfoOptions",
    "InfoRequest",
    "InfoResponse",
    "VideoInfo",
]
