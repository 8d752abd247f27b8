from fastapi import APIRouter, HTTPException, Request

from ytstream.core.errors import YtStreamError
from ytstream.core.logging import log_error, log_info
from ytstream.models.request import InfoRequest
from ytstream.models.response import BasicInfoResponse, InfoResponse
from ytstream.services.info import VideoInfoService
from ytstream.utils.locale import get_locale, safe_url_for_log
from ytstream.utils.url import validate_id

router = APIRouter()


def _loggable(ref: str) -> str:
    return ref if validate_id(ref) else safe_url_for_log(ref)


async def _fetch(request: Request, info_request: InfoRequest, full: bool) -> dict:
    locale = get_locale(request.headers.get("accept-language"))
    log_info(request, f"Fetching {'info' if full else 'basic info'} for {_loggable(info_request.url)}")

    try:
        payload = await VideoInfoService.fetch(info_request, locale, full=full)
    except YtStreamError:
        raise
    except Exception as e:
        log_error(request, f"Video info error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    log_info(request, f"Info retrieved: {payload.get('title')}")
    return payload


@router.post("/info/basic", response_model=BasicInfoResponse)
async def get_basic_video_info(request: Request, info_request: InfoRequest):
    """Metadata only, no deciphering"""
    return await _fetch(request, info_request, full=False)


@router.post("/info", response_model=InfoResponse)
async def get_video_info(request: Request, info_request: InfoRequest):
    """Full resolution with ranked formats"""
    return await _fetch(request, info_request, full=True)
