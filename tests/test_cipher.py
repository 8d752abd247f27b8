import time

import pytest

from ytstream.core.errors import ExtractionError, ScriptExecutionError
from ytstream.infra import sandbox
from ytstream.services import cipher
from ytstream.services.cipher import (
    CipherExtractor,
    DecipherCanonical,
    DecipherNamed,
    NTransformNamed,
    NTransformSplitJoin,
    find_function_name,
    normalize_player_url,
    strip_typeof_guard,
)
from ytstream.services.patterns import compile_table, N_TRANSFORM_NAME_REGEXPS

from .conftest import (
    DECIPHER,
    DECIPHERED_SIGNATURE,
    N_VALUE,
    PLAYER_SCRIPT,
    PLAYER_SCRIPT_WITHOUT_N,
    SIGNATURE,
    TRANSFORMED_N,
)

LOOPING_UNIT = "var F=function(a){for(var i=0;i<1;i=i){}return a};F(sig);"

# Helper fields separated by ", " are outside the canonical shape
NAMED_ONLY_SCRIPT = "\n".join([
    "var _yt_player={};",
    "var Xy={ab:function(a,b){a.splice(0,b)}, cd:function(a){a.reverse()},\n"
    "ef:function(a,b){var c=a[0];a[0]=a[b%a.length];a[b%a.length]=c}};",
    DECIPHER,
    "var h={s:1},m;h.s&&(m=Qa(decodeURIComponent(h.s)));",
])


@pytest.fixture(autouse=True)
def reset_warnings(monkeypatch):
    monkeypatch.setattr(cipher, "_decipher_warning", False)
    monkeypatch.setattr(cipher, "_n_transform_warning", False)


def test_extracts_both_transforms():
    decipher, n_transform = CipherExtractor().extract(PLAYER_SCRIPT)
    assert decipher is not None
    assert n_transform is not None
    assert sandbox.invoke(decipher, SIGNATURE) == DECIPHERED_SIGNATURE
    assert sandbox.invoke(n_transform, N_VALUE) == TRANSFORMED_N


def test_decipher_is_deterministic():
    script = CipherExtractor().build(PLAYER_SCRIPT)
    results = {sandbox.invoke(script.decipher, SIGNATURE) for _ in range(3)}
    assert results == {DECIPHERED_SIGNATURE}


def test_canonical_decipher_unit_binds_fixed_name():
    unit = DecipherCanonical().extract(PLAYER_SCRIPT)
    assert unit.startswith("var Xy={")
    assert unit.endswith(f"{cipher.DECIPHER_FUNC_NAME}({cipher.DECIPHER_ARGUMENT});")


def test_named_n_transform_follows_array_indirection():
    table = compile_table(N_TRANSFORM_NAME_REGEXPS)
    assert find_function_name(PLAYER_SCRIPT, table) == "Yn"
    unit = NTransformNamed().extract(PLAYER_SCRIPT)
    assert 'b.join("")+"_x"' in unit


def test_split_join_skips_the_decipher_shape():
    assert NTransformSplitJoin().extract(PLAYER_SCRIPT_WITHOUT_N) is None


def test_missing_n_transform_falls_back_to_identity(caplog):
    script = CipherExtractor().build(PLAYER_SCRIPT_WITHOUT_N, "https://www.youtube.com/base.js")
    assert script.n_transform_placeholder
    assert script.decipher is not None
    assert sandbox.invoke(script.n_transform, N_VALUE) == N_VALUE
    assert "n transform" in caplog.text


def test_n_transform_warning_is_logged_once(caplog):
    extractor = CipherExtractor()
    extractor.build(PLAYER_SCRIPT_WITHOUT_N)
    extractor.build(PLAYER_SCRIPT_WITHOUT_N)
    assert caplog.text.count("Could not parse n transform") == 1


def test_missing_decipher_keeps_script_usable():
    script = CipherExtractor().build("var nothing=1;")
    assert script.decipher is None
    assert script.n_transform_placeholder


def test_strip_typeof_guard():
    unit = 'var F=function(a){if(typeof Xq==="undefined")return a;var b=a.split("");return b.join("")};F(ncode);'
    assert "typeof" not in strip_typeof_guard(unit)


def test_tce_player_url_is_rewritten():
    url = "https://www.youtube.com/s/player/abc/player_ias_tce.vflset/en_US/base.js"
    assert normalize_player_url(url) == "https://www.youtube.com/s/player/abc/player_ias.vflset/en_US/base.js"


def test_compile_script_requires_trailer():
    with pytest.raises(ExtractionError):
        sandbox.compile_script("var F=function(a){return a};")


def test_invoke_wraps_interpreter_errors():
    compiled = sandbox.compile_script("var F=function(a){return a.nope()};F(sig);")
    with pytest.raises(ScriptExecutionError):
        sandbox.invoke(compiled, "x")


def test_named_decipher_when_helper_is_not_canonical():
    assert DecipherCanonical().extract(NAMED_ONLY_SCRIPT) is None

    unit = DecipherNamed().extract(NAMED_ONLY_SCRIPT)
    assert unit.startswith("var Xy={ab:")
    assert unit.endswith(f"{cipher.DECIPHER_FUNC_NAME}({cipher.DECIPHER_ARGUMENT});")

    decipher, _ = CipherExtractor().extract(NAMED_ONLY_SCRIPT)
    assert sandbox.invoke(decipher, SIGNATURE) == DECIPHERED_SIGNATURE


def test_runaway_units_do_not_starve_later_units():
    for _ in range(5):
        looping = sandbox.compile_script(LOOPING_UNIT)
        with pytest.raises(ScriptExecutionError, match="exceeded"):
            sandbox.invoke(looping, "x", timeout=0.2)

    echo = sandbox.compile_script('var G=function(a){return a+"!"};G(sig);')
    assert sandbox.invoke(echo, "x") == "x!"


def test_timed_out_unit_is_not_run_again():
    looping = sandbox.compile_script(LOOPING_UNIT)
    with pytest.raises(ScriptExecutionError):
        sandbox.invoke(looping, "x", timeout=0.2)
    assert looping.timed_out

    started = time.monotonic()
    with pytest.raises(ScriptExecutionError, match="timed out earlier"):
        sandbox.invoke(looping, "y", timeout=5)
    assert time.monotonic() - started < 1


def test_invoke_rejects_non_string_results():
    compiled = sandbox.compile_script("var F=function(a){return a.length};F(sig);")
    with pytest.raises(ScriptExecutionError, match="expected str"):
        sandbox.invoke(compiled, "abc")
