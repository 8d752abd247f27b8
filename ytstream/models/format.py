from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Format(BaseModel):
    """
    One stream descriptor.

    Fields use the platform's camelCase names on the wire so raw player
    responses validate directly; unknown keys are kept as extras.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    itag: int
    url: Optional[str] = None
    mime_type: Optional[str] = None
    bitrate: Optional[int] = None
    average_bitrate: Optional[int] = None
    audio_bitrate: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None
    quality: Optional[str] = None
    quality_label: Optional[str] = None
    audio_quality: Optional[str] = None
    audio_sample_rate: Optional[str] = None
    audio_channels: Optional[int] = None
    content_length: Optional[str] = None
    approx_duration_ms: Optional[str] = None
    last_modified: Optional[str] = None
    init_range: Optional[Dict[str, str]] = None
    index_range: Optional[Dict[str, str]] = None
    target_duration_sec: Optional[float] = None
    max_dvr_duration_sec: Optional[float] = None

    signature_cipher: Optional[str] = None
    cipher: Optional[str] = None

    container: Optional[str] = None
    codecs: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    has_video: bool = False
    has_audio: bool = False
    is_live: bool = False
    is_hls: bool = Field(default=False, alias="isHLS")
    is_dash_mpd: bool = Field(default=False, alias="isDashMPD")

    @property
    def content_length_int(self) -> int:
        try:
            return int(self.content_length or 0)
        except ValueError:
            return 0

    @property
    def quality_label_int(self) -> int:
        """Leading number of the quality label, '1080p60 HDR' -> 1080"""
        digits = ""
        for char in self.quality_label or "":
            if not char.isdigit():
                break
            digits += char
        return int(digits) if digits else 0

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
