from typing import AsyncIterator, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ytstream.core.logging import log_info
from ytstream.models.format import Format
from ytstream.models.options import ByteRange, DownloadOptions
from ytstream.models.request import DownloadRequest
from ytstream.services.formats import choose_format
from ytstream.services.info import VideoInfoService, get_info
from ytstream.services.stream import DownloadStream, download_from_info
from ytstream.utils.filename import download_filename
from ytstream.utils.locale import get_locale
from ytstream.utils.ranges import parse_range_header
from ytstream.utils.url import get_video_id

router = APIRouter()


def _requested_range(download_request: DownloadRequest, header: Optional[str], fmt: Format) -> Optional[ByteRange]:
    if download_request.range:
        return download_request.range
    length = fmt.content_length_int
    if not header or not length:
        return None
    parsed = parse_range_header(header, length)
    if parsed is None:
        raise HTTPException(status_code=416, detail="Requested range not satisfiable")
    return ByteRange(start=parsed[0], end=parsed[1])


async def _body(stream: DownloadStream) -> AsyncIterator[bytes]:
    try:
        async for chunk in stream:
            yield chunk
    finally:
        stream.destroy()


@router.post("/download")
async def download_video(request: Request, download_request: DownloadRequest):
    """Stream the chosen format, honouring Range"""
    locale = get_locale(request.headers.get("accept-language"))
    info_options = VideoInfoService.options_for(download_request, locale)
    video_id = get_video_id(download_request.url)

    info = await get_info(video_id, info_options)
    try:
        fmt = choose_format(info.formats, quality=download_request.quality, filter=download_request.filter)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    byte_range = _requested_range(download_request, request.headers.get("range"), fmt)
    extra = {}
    if download_request.dl_chunk_size is not None:
        extra["dl_chunk_size"] = download_request.dl_chunk_size
    options = DownloadOptions(
        **info_options.model_dump(exclude={"client"}),
        format=fmt,
        range=byte_range,
        begin=download_request.begin,
        **extra,
    )

    filename = download_filename(info.title, video_id, fmt.container)
    headers: Dict[str, str] = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}",
        "Accept-Ranges": "bytes",
    }
    status_code = 200
    length = fmt.content_length_int
    if byte_range and length:
        end = length - 1 if byte_range.end is None else min(byte_range.end, length - 1)
        start = byte_range.start or 0
        headers["Content-Range"] = f"bytes {start}-{end}/{length}"
        headers["Content-Length"] = str(end - start + 1)
        status_code = 206
    elif length and not (fmt.is_hls or fmt.is_dash_mpd):
        headers["Content-Length"] = str(length)

    log_info(request, f"Streaming itag {fmt.itag} of {video_id} as {filename}")
    stream = download_from_info(info, options)
    media_type = (fmt.mime_type or "application/octet-stream").split(";")[0]
    return StreamingResponse(_body(stream), status_code=status_code, media_type=media_type, headers=headers)
