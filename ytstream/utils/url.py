import re
from urllib.parse import parse_qs, urlparse

from ytstream.core.errors import InvalidVideoIdError

VALID_QUERY_DOMAINS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
}

VALID_PATH_DOMAINS = re.compile(r"^https?://(youtu\.be/|(www\.)?youtube\.com/(embed|v|shorts|live)/)")

ID_REGEX = re.compile(r"^[a-zA-Z0-9\-_]{11}$")
URL_REGEX = re.compile(r"^https?://")


def validate_id(video_id: str) -> bool:
    return bool(ID_REGEX.match(video_id))


def get_url_video_id(link: str) -> str:
    """Video id from a watch, short, embed, shorts or live link"""
    parsed = urlparse(link.strip())
    video_id = (parse_qs(parsed.query).get("v") or [None])[0]

    if VALID_PATH_DOMAINS.match(link.strip()) and not video_id:
        segments = [s for s in parsed.path.split("/") if s]
        video_id = segments[-1] if segments else None
    elif parsed.hostname not in VALID_QUERY_DOMAINS:
        raise InvalidVideoIdError("Not a YouTube domain")

    if not video_id:
        raise InvalidVideoIdError(f"No video id found: \"{link}\"")

    video_id = video_id[:11]
    if not validate_id(video_id):
        raise InvalidVideoIdError(f"Video id ({video_id}) does not match expected format ({ID_REGEX.pattern})")
    return video_id


def get_video_id(value: str) -> str:
    """Accept a bare id or any supported link"""
    if validate_id(value):
        return value
    return get_url_video_id(value)


def validate_url(link: str) -> bool:
    try:
        get_url_video_id(link)
    except InvalidVideoIdError:
        return False
    return True
