"""Small text-parsing helpers shared by the interpreters."""

import re
from dataclasses import dataclass

NUMBER = r"\d+(?:[.,]\d+)?"

_RANGE_RE = re.compile(
    rf"(?<![\d.])(?P<low>{NUMBER})\s*(?:-|–|—|to)\s*(?P<high>{NUMBER})(?![\d.])",
    re.IGNORECASE,
)
_BOUND_RE = re.compile(
    rf"(?P<op>[<>]=?|≤|≥|up to|below|above)\s*(?P<bound>{NUMBER})", re.IGNORECASE
)
_MASKED_RE = re.compile(r"\*{2,}")


@dataclass(frozen=True)
class Range:
    """Closed reference interval; either bound may be open (None)."""

    low: float | None
    high: float | None
    text: str

    @property
    def width(self) -> float:
        if self.low is not None and self.high is not None:
            return self.high - self.low
        return abs(self.high if self.high is not None else self.low or 0.0)


def to_float(raw: str) -> float | None:
    """Parse ``12.5``, ``12,5`` (decimal comma) or ``1,250`` (thousands)."""
    cleaned = raw.strip()
    if re.fullmatch(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?", cleaned):
        cleaned = cleaned.replace(",", "")
    else:
        cleaned = cleaned.replace(",", ".")
    try:
        return float(cleaned)
    except ValueError:
        return None


def find_range(text: str) -> Range | None:
    """First ``a-b`` interval in *text*, else a one-sided ``<b`` / ``>a`` bound."""
    match = _RANGE_RE.search(text)
    if match:
        low = to_float(match.group("low"))
        high = to_float(match.group("high"))
        if low is not None and high is not None and low <= high:
            return Range(low=low, high=high, text=match.group(0).strip())
    match = _BOUND_RE.search(text)
    if match:
        bound = to_float(match.group("bound"))
        if bound is None:
            return None
        op = match.group("op").lower()
        if op in ("<", "<=", "≤", "up to", "below"):
            return Range(low=None, high=bound, text=match.group(0).strip())
        return Range(low=bound, high=None, text=match.group(0).strip())
    return None


def lines(text: str) -> list[str]:
    """Non-empty, whitespace-trimmed lines."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def is_masked(text: str) -> bool:
    return bool(_MASKED_RE.search(text))


def first_group(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None
