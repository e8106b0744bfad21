from __future__ import annotations

import re
from typing import List

from .errors import EmptyInput, InvalidRange

SINGLE_PATTERN = re.compile(r"^\d+$")
RANGE_PATTERN = re.compile(r"^(?P<start>\d+)\s*(?:\.\.|-)\s*(?P<end>\d+)$")


def parse_selection(text: str, max_index: int) -> List[int]:
    """
    Expand an index expression such as ``"1..3,5"`` or ``"2-4, 7"``.

    Range endpoints above ``max_index`` are clipped instead of rejected so a
    mistyped upper bound still selects everything up to the last item.
    Single indices outside ``1..max_index`` are rejected.
    """
    if text is None or not text.strip():
        raise EmptyInput("nothing selected")
    if max_index < 1:
        raise EmptyInput("there is nothing to select from")
    selected: set[int] = set()
    for raw_token in text.split(","):
        token = raw_token.strip()
        if SINGLE_PATTERN.match(token):
            index = int(token)
            if index < 1 or index > max_index:
                raise InvalidRange(f"{index} is outside 1..{max_index}")
            selected.add(index)
            continue
        match = RANGE_PATTERN.match(token)
        if not match:
            raise InvalidRange(f"cannot parse {token!r}; use N, N..M or N-M")
        start = min(int(match.group("start")), max_index)
        end = min(int(match.group("end")), max_index)
        if start < 1:
            raise InvalidRange(f"{token!r} starts below 1")
        if start > end:
            raise InvalidRange(f"{token!r} is descending")
        selected.update(range(start, end + 1))
    return sorted(selected)


def format_selection(indices: List[int]) -> str:
    """Compact form of a selection, e.g. ``[1, 2, 3, 5]`` -> ``"1..3,5"``."""
    parts: List[str] = []
    ordered = sorted(set(indices))
    idx = 0
    while idx < len(ordered):
        start = ordered[idx]
        end = start
        while idx + 1 < len(ordered) and ordered[idx + 1] == end + 1:
            idx += 1
            end = ordered[idx]
        parts.append(str(start) if start == end else f"{start}..{end}")
        idx += 1
    return ",".join(parts)
