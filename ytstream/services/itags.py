"""
Static capabilities per itag.

Used to fill in what a raw descriptor leaves out (manifest entries carry
little more than an itag). Live response fields always win over these.
"""
from typing import Dict, Optional


def _entry(mime_type: str, quality_label: Optional[str], bitrate: Optional[int], audio_bitrate: Optional[int]) -> dict:
    return {
        "mimeType": mime_type,
        "qualityLabel": quality_label,
        "bitrate": bitrate,
        "audioBitrate": audio_bitrate,
    }


FORMATS: Dict[int, dict] = {
    5: _entry('video/flv; codecs="Sorenson H.283, mp3"', "240p", 250000, 64),
    6: _entry('video/flv; codecs="Sorenson H.263, mp3"', "270p", 800000, 64),
    13: _entry('video/3gp; codecs="MPEG-4 Visual, aac"', None, 500000, None),
    17: _entry('video/3gp; codecs="MPEG-4 Visual, aac"', "144p", 50000, 24),
    18: _entry('video/mp4; codecs="H.264, aac"', "360p", 500000, 96),
    22: _entry('video/mp4; codecs="H.264, aac"', "720p", 2000000, 192),
    34: _entry('video/flv; codecs="H.264, aac"', "360p", 500000, 128),
    35: _entry('video/flv; codecs="H.264, aac"', "480p", 800000, 128),
    36: _entry('video/3gp; codecs="MPEG-4 Visual, aac"', "240p", 175000, 32),
    37: _entry('video/mp4; codecs="H.264, aac"', "1080p", 3000000, 192),
    38: _entry('video/mp4; codecs="H.264, aac"', "3072p", 3500000, 192),
    43: _entry('video/webm; codecs="VP8, vorbis"', "360p", 500000, 128),
    44: _entry('video/webm; codecs="VP8, vorbis"', "480p", 1000000, 128),
    45: _entry('video/webm; codecs="VP8, vorbis"', "720p", 2000000, 192),
    46: _entry('audio/webm; codecs="vp8, vorbis"', "1080p", None, 192),
    82: _entry('video/mp4; codecs="H.264, aac"', "360p", 500000, 96),
    83: _entry('video/mp4; codecs="H.264, aac"', "240p", 500000, 96),
    84: _entry('video/mp4; codecs="H.264, aac"', "720p", 2000000, 192),
    85: _entry('video/mp4; codecs="H.264, aac"', "1080p", 3000000, 192),
    91: _entry('video/ts; codecs="H.264, aac"', "144p", 100000, 48),
    92: _entry('video/ts; codecs="H.264, aac"', "240p", 150000, 48),
    93: _entry('video/ts; codecs="H.264, aac"', "360p", 500000, 128),
    94: _entry('video/ts; codecs="H.264, aac"', "480p", 800000, 128),
    95: _entry('video/ts; codecs="H.264, aac"', "720p", 1500000, 256),
    96: _entry('video/ts; codecs="H.264, aac"', "1080p", 2500000, 256),
    100: _entry('audio/webm; codecs="VP8, vorbis"', "360p", None, 128),
    101: _entry('audio/webm; codecs="VP8, vorbis"', "360p", None, 192),
    102: _entry('audio/webm; codecs="VP8, vorbis"', "720p", None, 192),
    120: _entry('video/flv; codecs="H.264, aac"', "720p", 2000000, 128),
    127: _entry('audio/ts; codecs="aac"', None, None, 96),
    128: _entry('audio/ts; codecs="aac"', None, None, 96),
    132: _entry('video/ts; codecs="H.264, aac"', "240p", 150000, 48),
    133: _entry('video/mp4; codecs="H.264"', "240p", 200000, None),
    134: _entry('video/mp4; codecs="H.264"', "360p", 300000, None),
    135: _entry('video/mp4; codecs="H.264"', "480p", 500000, None),
    136: _entry('video/mp4; codecs="H.264"', "720p", 1000000, None),
    137: _entry('video/mp4; codecs="H.264"', "1080p", 2500000, None),
    138: _entry('video/mp4; codecs="H.264"', "4320p", 13500000, None),
    139: _entry('audio/mp4; codecs="aac"', None, None, 48),
    140: _entry('audio/m4a; codecs="aac"', None, None, 128),
    141: _entry('audio/mp4; codecs="aac"', None, None, 256),
    151: _entry('video/ts; codecs="H.264, aac"', "720p", 50000, 24),
    160: _entry('video/mp4; codecs="H.264"', "144p", 100000, None),
    171: _entry('audio/webm; codecs="vorbis"', None, None, 128),
    172: _entry('audio/webm; codecs="vorbis"', None, None, 192),
    242: _entry('video/webm; codecs="VP9"', "240p", 100000, None),
    243: _entry('video/webm; codecs="VP9"', "360p", 250000, None),
    244: _entry('video/webm; codecs="VP9"', "480p", 500000, None),
    247: _entry('video/webm; codecs="VP9"', "720p", 700000, None),
    248: _entry('video/webm; codecs="VP9"', "1080p", 1500000, None),
    249: _entry('audio/webm; codecs="opus"', None, None, 48),
    250: _entry('audio/webm; codecs="opus"', None, None, 64),
    251: _entry('audio/webm; codecs="opus"', None, None, 160),
    264: _entry('video/mp4; codecs="H.264"', "1440p", 4000000, None),
    266: _entry('video/mp4; codecs="H.264"', "2160p", 12500000, None),
    271: _entry('video/webm; codecs="VP9"', "1440p", 9000000, None),
    272: _entry('video/webm; codecs="VP9"', "4320p", 20000000, None),
    278: _entry('video/webm; codecs="VP9"', "144p 30fps", 80000, None),
    298: _entry('video/mp4; codecs="H.264"', "720p", 3000000, None),
    299: _entry('video/mp4; codecs="H.264"', "1080p", 5500000, None),
    300: _entry('video/ts; codecs="H.264, aac"', "720p", 1318000, 48),
    302: _entry('video/webm; codecs="VP9"', "720p HFR", 2500000, None),
    303: _entry('video/webm; codecs="VP9"', "1080p HFR", 5000000, None),
    308: _entry('video/webm; codecs="VP9"', "1440p HFR", 10000000, None),
    313: _entry('video/webm; codecs="VP9"', "2160p", 13000000, None),
    315: _entry('video/webm; codecs="VP9"', "2160p HFR", 20000000, None),
    330: _entry('video/webm; codecs="VP9"', "144p HDR, HFR", 80000, None),
    331: _entry('video/webm; codecs="VP9"', "240p HDR, HFR", 100000, None),
    332: _entry('video/webm; codecs="VP9"', "360p HDR, HFR", 250000, None),
    333: _entry('video/webm; codecs="VP9"', "240p HDR, HFR", 500000, None),
    334: _entry('video/webm; codecs="VP9"', "720p HDR, HFR", 1000000, None),
    335: _entry('video/webm; codecs="VP9"', "1080p HDR, HFR", 1500000, None),
    336: _entry('video/webm; codecs="VP9"', "1440p HDR, HFR", 5000000, None),
    337: _entry('video/webm; codecs="VP9"', "2160p HDR, HFR", 12000000, None),
}

# Known audio bitrates for adaptive audio itags the platform omits
AUDIO_BITRATES: Dict[int, int] = {140: 128, 249: 48, 250: 64, 251: 160}
