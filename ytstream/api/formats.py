from fastapi import APIRouter, HTTPException, Request

from ytstream.core.logging import log_info
from ytstream.models.response import FormatsResponse
from ytstream.models.request import FormatsRequest
from ytstream.services.formats import add_format_meta, choose_format, filter_formats, sort_formats

router = APIRouter()


@router.post("/formats", response_model=FormatsResponse)
async def select_formats(request: Request, formats_request: FormatsRequest):
    """Filter, rank and optionally choose over a caller-supplied list"""
    formats = [add_format_meta(f) for f in formats_request.formats]
    try:
        if formats_request.filter:
            formats = filter_formats(formats, formats_request.filter)
        ranked = sort_formats(formats)
        chosen = choose_format(ranked, quality=formats_request.quality) if formats_request.choose else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_info(request, f"Ranked {len(ranked)} formats")
    return FormatsResponse(
        formats=[f.to_wire() for f in ranked],
        chosen=chosen.to_wire() if chosen else None,
    )
