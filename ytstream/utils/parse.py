import json
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Optional, Pattern, Union

BASE64_URL_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"

# Characters after which a "/" opens a regex literal rather than a division
_REGEX_PREFIX = re.compile(r"(^|[\[{(:;,=!&|?+\-*%~^<>])\s*$")

_QUOTES = "\"'`"


def between(haystack: str, left: Union[str, Pattern], right: str) -> str:
    """Text between the first ``left`` and the following ``right``, or ''"""
    if isinstance(left, str):
        start = haystack.find(left)
        if start == -1:
            return ""
        start += len(left)
    else:
        match = left.search(haystack)
        if not match:
            return ""
        start = match.end()

    end = haystack.find(right, start)
    if end == -1:
        return ""
    return haystack[start:end]


def try_parse_between(body: str, left: Union[str, Pattern], right: str, prepend: str = "", append: str = "") -> Any:
    data = between(body, left, right)
    if not data:
        return None
    try:
        return json.loads(f"{prepend}{data}{append}")
    except ValueError:
        return None


def skip_literal(source: str, index: int) -> int:
    """
    If ``source[index]`` opens a string or regex literal, return the index
    just past its closing delimiter, otherwise return ``index`` unchanged.
    """
    char = source[index]
    if char in _QUOTES:
        closer = char
    elif char == "/" and _REGEX_PREFIX.search(source[max(0, index - 10):index]):
        # Comments are not literals
        if source.startswith("//", index) or source.startswith("/*", index):
            return index
        closer = "/"
    else:
        return index

    i = index + 1
    in_class = False
    while i < len(source):
        c = source[i]
        if c == "\\":
            i += 2
            continue
        if closer == "/":
            if c == "[":
                in_class = True
            elif c == "]":
                in_class = False
            elif c == "/" and not in_class:
                return i + 1
        elif c == closer:
            return i + 1
        i += 1
    raise ValueError("Unterminated literal")


def find_matching_brace(source: str, open_index: int) -> int:
    """Index of the bracket closing the one at ``open_index``"""
    pairs = {"{": "}", "[": "]", "(": ")"}
    opener = source[open_index]
    if opener not in pairs:
        raise ValueError(f"Expected an opening bracket, got {opener!r}")
    closer = pairs[opener]

    depth = 0
    i = open_index
    while i < len(source):
        skipped = skip_literal(source, i)
        if skipped != i:
            i = skipped
            continue
        c = source[i]
        if c == opener:
            depth += 1
        elif c == closer:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise ValueError("No matching closing bracket found")


def cut_after_js(mixed_json: str) -> str:
    """Cut a JSON (or JS object literal) off at its closing bracket"""
    if not mixed_json or mixed_json[0] not in "[{":
        got = mixed_json[:1] if mixed_json else ""
        raise ValueError(f"Invalid JSON: must begin with [ or {{ but got: {got}")
    return mixed_json[:find_matching_brace(mixed_json, 0) + 1]


def generate_nonce(length: int) -> str:
    """Random base64url string, used for the ``cpn`` and ``t`` values"""
    return "".join(secrets.choice(BASE64_URL_CHARS) for _ in range(length))


_TIME_UNITS = {"ms": 1, "s": 1000, "m": 60 * 1000, "h": 60 * 60 * 1000}
_CLOCK_FORMAT = re.compile(r"^(?:(?:(\d+):)?(\d{1,2}):)?(\d{1,2})(?:\.(\d{3}))?$")
_UNIT_FORMAT = re.compile(r"(-?\d+)(ms|s|m|h)")


def parse_timestamp(value: Union[int, float, str, datetime]) -> int:
    """
    Milliseconds from ``123``, ``"01:02:03.500"``, ``"1h2m3s"`` or ``"250ms"``.
    A datetime is converted to epoch milliseconds.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(value)

    text = value.strip()
    if text.isdigit():
        return int(text)

    clock = _CLOCK_FORMAT.match(text)
    if clock:
        hours, minutes, seconds, millis = clock.groups()
        return (
            int(hours or 0) * _TIME_UNITS["h"]
            + int(minutes or 0) * _TIME_UNITS["m"]
            + int(seconds) * _TIME_UNITS["s"]
            + int(millis or 0)
        )

    return sum(int(n) * _TIME_UNITS[unit] for n, unit in _UNIT_FORMAT.findall(text))


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
