from dataclasses import dataclass
from typing import Optional

import httpx
from redis.asyncio import Redis

from ytstream.version import __version__


@dataclass
class RuntimeState:
    """Centralized runtime state"""
    redis: Optional[Redis] = None
    http_client: Optional[httpx.AsyncClient] = None
    version: str = __version__
    latest_version: Optional[str] = None
    last_update_check: float = 0.0
    update_warnings: int = 0


state = RuntimeState()
