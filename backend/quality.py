"""Quality label normalization onto the canonical resolution ladder."""

import re
from typing import Any

QUALITY_LADDER = ("360p", "480p", "720p", "1080p", "2160p")

DEFAULT_QUALITY = "720p"

# Ordered most-specific first; the first matching row wins
_QUALITY_TOKENS = (
    ("2160p", ("2160p", "4k", "uhd")),
    ("1080p", ("1080p", "1080", "fhd", "full hd")),
    ("720p", ("720p", "720", "hd")),
    ("480p", ("480p", "480", "sd")),
    ("360p", ("360p", "360", "cam")),
)


def _token_pattern(token: str) -> str:
    # Numeric tokens only need digit boundaries ("1080p60", "HD1080");
    # short words need full ones ("hdcam" is not "hd")
    body = re.escape(token).replace(r"\ ", r"[\s._-]*")
    if token[0].isdigit() and token != "4k":
        return r"(?<!\d)" + body + r"(?!\d)"
    return r"(?<![a-z0-9])" + body + r"(?![a-z0-9])"


_QUALITY_PATTERNS = tuple(
    (canonical, re.compile("|".join(_token_pattern(t) for t in tokens)))
    for canonical, tokens in _QUALITY_TOKENS
)

_RESOLUTION = re.compile(r"(?<!\d)(\d{3,4})p")


def _nearest_rung(height: int) -> str | None:
    """Map an off-ladder resolution to the nearest lower rung."""
    best = None
    for rung in QUALITY_LADDER:
        if int(rung[:-1]) <= height:
            best = rung
    return best or (QUALITY_LADDER[0] if height > 0 else None)


def normalize_quality(label: Any) -> str:
    """Map a provider-supplied quality label to one of QUALITY_LADDER.

    Examples:
        "Full HD" -> "1080p", "SD" -> "480p", "1080" -> "1080p",
        "WEIRD-LABEL" -> "720p" (neutral default)
    """
    if label is None:
        return DEFAULT_QUALITY
    text = str(label).strip().lower()
    if not text:
        return DEFAULT_QUALITY
    if text.isdigit():
        text = f"{text}p"

    for canonical, pattern in _QUALITY_PATTERNS:
        if pattern.search(text):
            return canonical

    match = _RESOLUTION.search(text)
    if match:
        return _nearest_rung(int(match.group(1))) or DEFAULT_QUALITY
    return DEFAULT_QUALITY


def quality_rank(value: str) -> int:
    """Position of a canonical value on the ladder (-1 if not canonical)."""
    try:
        return QUALITY_LADDER.index(value)
    except ValueError:
        return -1
