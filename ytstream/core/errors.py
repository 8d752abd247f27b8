from typing import Any, Optional


class YtStreamError(Exception):
    """Base class for every error raised by ytstream"""


class InvalidVideoIdError(YtStreamError, ValueError):
    """Link or id could not be turned into a video id"""


class PlayabilityError(YtStreamError):
    """
    The platform says the video cannot be played.
    Never retried: the reason is surfaced as-is.
    """

    def __init__(self, reason: str, status: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.status = status


class ProtocolError(YtStreamError):
    """Response had an unexpected shape or referred to another video"""

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


class RequestError(YtStreamError):
    """HTTP status or transport failure"""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def transient(self) -> bool:
        # No status means the connection itself failed
        return self.status_code is None or self.status_code >= 500


class ExtractionError(YtStreamError):
    """A transform could not be located in the player script"""


class ScriptExecutionError(YtStreamError):
    """A compiled transform failed or exceeded its time budget"""


class FormatNotFoundError(YtStreamError):
    def __init__(self, quality: Any):
        super().__init__(f"No such format found: {quality}")
        self.quality = quality


class ResolutionError(YtStreamError):
    """No playable format survived resolution"""

    def __init__(self, message: str, video_id: Optional[str] = None):
        super().__init__(message)
        self.video_id = video_id


def play_error(player_response: Optional[dict]) -> Optional[PlayabilityError]:
    """Return the playability error carried by a player response, if any"""
    playability = (player_response or {}).get("playabilityStatus")
    if not playability:
        return None

    status = playability.get("status")
    reason = playability.get("reason")

    if status in ("ERROR", "LOGIN_REQUIRED"):
        messages = playability.get("messages") or []
        return PlayabilityError(reason or (messages[0] if messages else "Unknown error"), status)

    if status == "LIVE_STREAM_OFFLINE":
        return PlayabilityError(reason or "The live stream is offline.", status)

    if status == "UNPLAYABLE":
        return PlayabilityError(reason or "This video is unavailable.", status)

    return None
