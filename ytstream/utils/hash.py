import hashlib


def hash_stable(data: str) -> str:
    """Create stable hash using SHA256"""
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def info_cache_key(op: str, video_id: str, lang: str) -> str:
    """Redis key for a resolved info payload"""
    return f"ytstream:{op}:{hash_stable(f'{video_id}:{lang}')}"
