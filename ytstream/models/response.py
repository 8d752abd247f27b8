from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class BasicInfoResponse(BaseModel):
    """Metadata-only resolution"""
    video_id: str
    title: Optional[str] = None
    author: Optional[str] = None
    length_seconds: Optional[int] = None
    thumbnail: Optional[str] = None
    description: Optional[str] = None
    video_url: Optional[str] = None
    is_live: bool = False
    video_details: Dict[str, Any] = {}


class InfoResponse(BasicInfoResponse):
    formats: List[Dict[str, Any]] = []
    best_format: Optional[Dict[str, Any]] = None
    html5player: Optional[str] = None


class FormatsResponse(BaseModel):
    formats: List[Dict[str, Any]]
    chosen: Optional[Dict[str, Any]] = None
