"""
display.numbers – compact number formatting for a narrow display.
"""

from __future__ import annotations

_SUFFIXES = ((1_000, "k"), (1_000_000, "M"), (1_000_000_000, "B"))


def format_large_number(num: float) -> str:
    """999 -> "999", 1000 -> "1.0k", 1_500_000 -> "1.5M".

    The value is rounded before the suffix is chosen, so 999.6 reads
    "1.0k" and 999_960 reads "1.0M".
    """
    if num == 0:
        return "0"
    magnitude = abs(num)
    sign = "-" if num < 0 else ""
    if round(magnitude) < 1000:
        return f"{sign}{magnitude:.0f}"
    for threshold, suffix in _SUFFIXES[:-1]:
        scaled = round(magnitude / threshold, 1)
        if scaled < 1000:
            return f"{sign}{scaled:.1f}{suffix}"
    threshold, suffix = _SUFFIXES[-1]
    return f"{sign}{magnitude / threshold:.1f}{suffix}"


def format_gain(num: float) -> str:
    """Signed variant: positive values get a leading "+", zero stays "0"."""
    text = format_large_number(num)
    if num > 0:
        return "+" + text
    return text


def format_percent(pct: float, signed: bool = True) -> str:
    """1-decimal percentage, "+" on non-negative values when *signed*."""
    sign = "+" if signed and pct >= 0 else ""
    return f"{sign}{pct:.1f}%"
