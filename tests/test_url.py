import pytest

from ytstream.core.errors import InvalidVideoIdError
from ytstream.utils.url import get_url_video_id, get_video_id, validate_id, validate_url

VIDEO_ID = "aqz-KE-bpKQ"


@pytest.mark.parametrize("link", [
    f"https://www.youtube.com/watch?v={VIDEO_ID}",
    f"https://youtube.com/watch?v={VIDEO_ID}&t=42",
    f"https://m.youtube.com/watch?v={VIDEO_ID}",
    f"https://music.youtube.com/watch?v={VIDEO_ID}",
    f"https://gaming.youtube.com/watch?v={VIDEO_ID}",
    f"https://youtu.be/{VIDEO_ID}",
    f"https://www.youtube.com/embed/{VIDEO_ID}",
    f"https://www.youtube.com/v/{VIDEO_ID}",
    f"https://www.youtube.com/shorts/{VIDEO_ID}",
    f"https://youtube.com/live/{VIDEO_ID}?feature=share",
])
def test_get_url_video_id(link):
    assert get_url_video_id(link) == VIDEO_ID
    assert validate_url(link)


@pytest.mark.parametrize("link", [
    f"https://example.com/watch?v={VIDEO_ID}",
    "https://www.youtube.com/watch?v=short",
    "https://www.youtube.com/feed/subscriptions",
])
def test_get_url_video_id_rejects(link):
    with pytest.raises(InvalidVideoIdError):
        get_url_video_id(link)
    assert not validate_url(link)


def test_get_video_id_accepts_bare_ids():
    assert validate_id(VIDEO_ID)
    assert get_video_id(VIDEO_ID) == VIDEO_ID
    assert not validate_id("not an id")


def test_invalid_video_id_is_a_value_error():
    with pytest.raises(ValueError):
        get_video_id("nope")
