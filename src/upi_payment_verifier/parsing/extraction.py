"""Regex field extraction helpers shared by every template field."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from functools import lru_cache

# Currency markers and grouping that can surround an amount capture.
_AMOUNT_NOISE_RE = re.compile(r"(?i)\b(?:rs|inr)\.?|[₹,\s]")


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a template pattern case-insensitively.

    Raises:
        re.error: If the pattern is not a valid regular expression.
    """

    return re.compile(pattern, re.IGNORECASE)


def first_group_or_match(match: re.Match[str]) -> str:
    """Return the first non-empty capture group, else the whole match.

    Templates often use alternations such as `A(x)|B(y)` where only one group
    participates, so the first group that captured text wins.
    """

    for group in match.groups():
        if group:
            return group.strip()
    return match.group(0).strip()


def search_field(text: str, pattern: str) -> str | None:
    """Search `text` with `pattern` and return the extracted value.

    Returns None when nothing matched. Invalid patterns propagate `re.error`
    so callers can decide how to report them.
    """

    match = compile_pattern(pattern).search(text)
    if match is None:
        return None
    return first_group_or_match(match)


def parse_amount(raw: str) -> Decimal | None:
    """Turn an amount capture such as `₹1,234.56` or `Rs. 500` into a Decimal.

    Returns None unless the result is a finite number greater than zero.
    """

    cleaned = _AMOUNT_NOISE_RE.sub("", raw or "")
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount
