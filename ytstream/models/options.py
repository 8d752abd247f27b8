from typing import Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, validator

from ytstream.config.settings import RetryConfig, config
from ytstream.models.format import Format

Quality = Union[int, str, List[Union[int, str]]]


class FormatOptions(BaseModel):
    """How ``choose_format`` picks a format"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    quality: Optional[Quality] = Field(None, description="highest, lowest, highest/lowest audio/video, an itag or a list of itags")
    filter: Optional[Union[str, Callable[[Format], bool]]] = Field(None, description="Named filter or predicate")
    format: Optional[Format] = Field(None, description="Explicit format, must carry a URL")


class InfoOptions(BaseModel):
    """Per-call resolution options; unset values fall back to the configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    lang: str = Field(default_factory=lambda: config.clients.lang, description="Interface language")
    player_clients: List[str] = Field(
        default_factory=lambda: list(config.clients.player_clients),
        description="Device profiles to query, in priority order",
    )
    retry: RetryConfig = Field(default_factory=lambda: config.retry.model_copy())
    request_headers: Dict[str, str] = Field(default_factory=dict, description="Extra headers for page requests")
    client: Optional[httpx.AsyncClient] = Field(None, exclude=True, description="Shared HTTP client override")

    @validator("player_clients")
    def normalize_player_clients(cls, v):
        return [c.strip().upper() for c in v if c and c.strip()]

    def cache_key(self, op: str, video_id: str) -> tuple:
        return op, video_id, self.lang


class ByteRange(BaseModel):
    start: Optional[int] = Field(None, ge=0)
    end: Optional[int] = Field(None, ge=0)


class DownloadOptions(FormatOptions, InfoOptions):
    range: Optional[ByteRange] = Field(None, description="Inclusive byte range")
    begin: Optional[Union[int, str]] = Field(None, description="Start offset: ms, 1h2m3s, 01:02:03.500")
    live_buffer: int = Field(default_factory=lambda: config.download.live_buffer, ge=0)
    high_water_mark: int = Field(default_factory=lambda: config.download.high_water_mark, ge=1)
    dl_chunk_size: int = Field(default_factory=lambda: config.download.dl_chunk_size, ge=0)
    chunk_readahead: int = Field(default_factory=lambda: config.download.chunk_readahead, ge=1)
    max_reconnects: int = Field(default_factory=lambda: config.download.max_reconnects, ge=0)

    def format_options(self) -> FormatOptions:
        return FormatOptions(quality=self.quality, filter=self.filter, format=self.format)

    def info_options(self) -> InfoOptions:
        return InfoOptions(
            lang=self.lang,
            player_clients=self.player_clients,
            retry=self.retry,
            request_headers=self.request_headers,
            client=self.client,
        )
