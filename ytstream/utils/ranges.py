from typing import Iterator, Optional, Tuple


def parse_range_header(range_header: str, total_size: int) -> Optional[Tuple[int, int]]:
    """
    Single ``bytes=start-end`` range as an inclusive (start, end) pair.
    Multi-range and malformed headers give None.
    """
    if not range_header or not range_header.startswith("bytes="):
        return None

    spec = range_header[len("bytes="):].strip()
    if "," in spec or "-" not in spec:
        return None

    start_s, end_s = spec.split("-", 1)

    if start_s == "":
        # suffix range: last N bytes
        try:
            n = int(end_s)
        except ValueError:
            return None
        if n <= 0:
            return None
        return max(0, total_size - n), total_size - 1

    try:
        start = int(start_s)
        end = total_size - 1 if end_s == "" else int(end_s)
    except ValueError:
        return None

    if start < 0 or end < start:
        return None
    return start, min(end, total_size - 1)


def plan_byte_ranges(start: int, end: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """
    Consecutive inclusive windows covering ``start..end`` with no gaps
    or overlaps; every window but the last is ``chunk_size`` bytes.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    while start <= end:
        window_end = min(start + chunk_size - 1, end)
        yield start, window_end
        start = window_end + 1


def range_header(start: Optional[int], end: Optional[int]) -> str:
    return f"bytes={start or 0}-{'' if end is None else end}"
