from urllib.parse import quote

import pytest

from ytstream.services.cipher import CipherExtractor
from ytstream.services.decipher import (
    decipher_formats,
    decipher_url,
    get_query_param,
    set_query_param,
    transform_n,
)

from .conftest import (
    DECIPHERED_SIGNATURE,
    N_VALUE,
    PLAYER_SCRIPT,
    PLAYER_SCRIPT_WITHOUT_N,
    SIGNATURE,
    TRANSFORMED_N,
    ciphered_format,
    plain_format,
    query,
)


@pytest.fixture(scope="module")
def script():
    return CipherExtractor().build(PLAYER_SCRIPT)


def test_set_query_param_keeps_order():
    url = set_query_param("https://h/p?a=1&n=x&b=2", "n", "y")
    assert url == "https://h/p?a=1&n=y&b=2"
    assert get_query_param(set_query_param("https://h/p", "sig", "s"), "sig") == "s"


def test_ciphered_url_gets_signature_and_n(script):
    fmt = ciphered_format()
    url = decipher_url(fmt["signatureCipher"], script)
    assert query(url, "sig") == DECIPHERED_SIGNATURE
    assert query(url, "n") == TRANSFORMED_N
    assert query(url, "itag") == "18"


def test_custom_signature_parameter(script):
    media = "https://rr1.googlevideo.com/videoplayback?itag=22"
    raw = f"s={SIGNATURE}&sp=signature&url={quote(media, safe='')}"
    assert query(decipher_url(raw, script), "signature") == DECIPHERED_SIGNATURE


def test_plain_url_only_gets_n(script):
    url = decipher_url(plain_format()["url"], script)
    assert query(url, "n") == TRANSFORMED_N
    assert query(url, "sig") is None


def test_url_without_n_is_untouched(script):
    url = "https://rr1.googlevideo.com/videoplayback?itag=18"
    assert transform_n(url, script) == url


def test_placeholder_leaves_n_unmodified():
    script = CipherExtractor().build(PLAYER_SCRIPT_WITHOUT_N)
    url = decipher_url(plain_format()["url"], script)
    assert query(url, "n") == N_VALUE


def test_cipher_without_decipher_function_is_dropped():
    script = CipherExtractor().build("var nothing=1;")
    formats = decipher_formats([ciphered_format(), plain_format()], script)
    assert [f.itag for f in formats.values()] == [140]


def test_decipher_formats_clears_cipher_fields(script):
    formats = decipher_formats([ciphered_format(), plain_format()], script)
    assert len(formats) == 2
    for url, fmt in formats.items():
        assert fmt.url == url
        assert fmt.signature_cipher is None
        assert fmt.cipher is None
