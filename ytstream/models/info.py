from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ytstream.models.format import Format


class VideoInfo(BaseModel):
    """
    Result of one resolution.

    ``full`` is False for metadata-only results (``get_basic_info``); only a
    full result carries deciphered, downloadable formats.
    """
    player_response: Dict[str, Any] = Field(default_factory=dict)
    response: Optional[Dict[str, Any]] = None
    client_responses: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    html5player: Optional[str] = None
    video_details: Dict[str, Any] = Field(default_factory=dict)
    formats: List[Format] = Field(default_factory=list)
    best_format: Optional[Format] = None
    selected_format: Optional[Format] = None
    video_url: Optional[str] = None
    dash_manifest_url: Optional[str] = None
    hls_manifest_url: Optional[str] = None
    full: bool = False

    @property
    def video_id(self) -> Optional[str]:
        return self.video_details.get("videoId")

    @property
    def title(self) -> Optional[str]:
        return self.video_details.get("title")

    @property
    def is_live(self) -> bool:
        live = self.video_details.get("liveBroadcastDetails") or {}
        return bool(self.video_details.get("isLive") or live.get("isLiveNow"))
