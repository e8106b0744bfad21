from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher
from typing import Optional

# Trailing decorations that differ between a file's title and the catalog title.
_DECORATION_PATTERN = re.compile(
    r"\s*[\(\[](?:remaster(?:ed)?|live|bonus track|mono|stereo|explicit)[^\)\]]*[\)\]]\s*$",
    re.IGNORECASE,
)


def normalize_match_text(value: str) -> str:
    cleaned = unicodedata.normalize("NFKD", value)
    cleaned = cleaned.encode("ascii", "ignore").decode("ascii")
    cleaned = cleaned.lower()
    cleaned = re.sub(r"[^a-z0-9]+", " ", cleaned)
    return cleaned.strip()


def normalize_title_for_match(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    stripped = _DECORATION_PATTERN.sub("", value)
    cleaned = normalize_match_text(stripped or value)
    return cleaned or None


def name_match_score(local_name: Optional[str], remote_title: Optional[str]) -> float:
    """
    Case-insensitive similarity used by the name strategy.

    A remote title contained in the local name (e.g. ``"03 - Intro (demo)"``
    vs ``"Intro"``) scores at least 0.9; otherwise the edit-distance ratio is used.
    """
    norm_local = normalize_title_for_match(local_name)
    norm_remote = normalize_title_for_match(remote_title)
    if not norm_local or not norm_remote:
        return 0.0
    if norm_local == norm_remote:
        return 1.0
    ratio = SequenceMatcher(None, norm_local, norm_remote).ratio()
    shorter, longer = sorted((norm_local, norm_remote), key=len)
    if len(shorter) >= 3 and re.search(rf"\b{re.escape(shorter)}\b", longer):
        return max(ratio, 0.9)
    return ratio


def duration_distance(a: Optional[int], b: Optional[int]) -> float:
    if a is None or b is None:
        return float("inf")
    return float(abs(a - b))


def parse_duration_text(value: Optional[str]) -> Optional[int]:
    """Parse ``"m:ss"`` / ``"h:mm:ss"`` into milliseconds."""
    if not value or ":" not in value:
        return None
    total = 0
    try:
        for part in value.strip().split(":"):
            total = total * 60 + int(float(part))
    except (ValueError, TypeError):
        return None
    return total * 1000
