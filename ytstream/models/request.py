from typing import List, Optional, Union

from pydantic import BaseModel, Field, validator

from ytstream.models.format import Format
from ytstream.models.options import ByteRange
from ytstream.utils.url import validate_id, validate_url


class InfoRequest(BaseModel):
    url: str = Field(..., description="Video URL or id")
    lang: Optional[str] = Field(None, description="Interface language, defaults to Accept-Language")
    player_clients: Optional[List[str]] = Field(None, description="Device profiles to query")

    @validator('url')
    def validate_video_ref(cls, v):
        """Validate link syntax only, the id is extracted by the service"""
        v = v.strip()
        if not (validate_id(v) or validate_url(v)):
            raise ValueError("Not a valid video URL or id")
        return v


class FormatsRequest(BaseModel):
    formats: List[Format] = Field(..., description="Formats returned by /info")
    quality: Optional[Union[int, str, List[Union[int, str]]]] = None
    filter: Optional[str] = Field(None, description="audioandvideo, video, videoonly, audio or audioonly")
    choose: bool = Field(True, description="Also return the chosen format")


class DownloadRequest(InfoRequest):
    quality: Optional[Union[int, str, List[Union[int, str]]]] = Field(None, description="Quality or itag(s)")
    filter: Optional[str] = Field(None, description="Named stream filter")
    range: Optional[ByteRange] = Field(None, description="Inclusive byte range")
    begin: Optional[Union[int, str]] = Field(None, description="Start offset for live or manifest formats")
    dl_chunk_size: Optional[int] = Field(None, ge=0, description="Chunk size, 0 disables chunking")
