from .filename import sanitize_filename
from .hash import hash_stable
from .url import get_url_video_id, get_video_id, validate_id, validate_url

__all__ = [
    "get_url_video_id",
    "get_video_id",
    "hash_stable",
    "sanitize_filename",
    "validate_id",
    "validate_url",
]
