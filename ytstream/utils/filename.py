import re
import unicodedata
from typing import Optional

WINDOWS_RESERVED = {
    'CON', 'PRN', 'AUX', 'NUL',
    'COM1', 'COM2', 'COM3', 'COM4', 'COM5', 'COM6', 'COM7', 'COM8', 'COM9',
    'LPT1', 'LPT2', 'LPT3', 'LPT4', 'LPT5', 'LPT6', 'LPT7', 'LPT8', 'LPT9'
}


def sanitize_filename(name: str, max_length: int = 200) -> str:
    """Sanitize filename for cross-platform compatibility"""
    name = unicodedata.normalize("NFKC", name)
    name = re.sub(r'[\\/:*?"<>|]', '_', name)
    if name.upper() in WINDOWS_RESERVED:
        name = f"_{name}"
    return name[:max_length].strip()


def download_filename(title: Optional[str], video_id: str, container: Optional[str]) -> str:
    """Attachment name for a downloaded stream, e.g. ``My video.webm``"""
    base = sanitize_filename(title or "") or video_id
    return f"{base}.{container}" if container else base
