# givecart/helpers.py
"""
givecart.helpers: compact money/number helpers shared by the intake paths.

This module provides:
- parse_cents: strict money parser ("$1,234.50", "2k", 15) -> cents, None on junk
- to_cents: lenient variant (junk -> 0)
- normalize_donation_cents: clamp + provider-minimum rule for donations
- safe_int / safe_currency: tolerant metadata coercion
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Optional

PROVIDER_MIN_DONATION_CENTS = 50  # card networks reject charges under $0.50
MAX_DONATION_CENTS = 10_000_000  # $100,000
MAX_ORDER_CENTS = 100_000_000  # $1,000,000

# Accepts:
#  - "$1,234" / "1234" / "1234.56"
#  - "2k" / "1.5K" / "2m" / "1.25M"
#  - leading/trailing whitespace
_MONEY_RE = re.compile(
    r"""
    ^\s*
    (?P<sign>[-+])?
    \s*\$?\s*
    (?P<num>
        (?:
            \d{1,3}(?:,\d{3})*   # 1,234,567
            |
            \d+                 # 1234567
        )
        (?:\.\d+)?              # .99
        |
        (?:\.\d+)               # .99
    )
    \s*(?P<suffix>[KkMm])?
    \s*$
    """,
    re.VERBOSE,
)

_SUFFIX_MULT = {"k": Decimal("1000"), "m": Decimal("1000000")}


def _to_decimal(val: Any) -> Optional[Decimal]:
    """
    Best-effort conversion to Decimal for stable rounding.
    Returns None for anything unparsable; empty input counts as zero.
    """
    if val is None:
        return Decimal("0")
    if isinstance(val, Decimal):
        return val
    if isinstance(val, bool):
        # avoid True->1 surprises in money paths
        return None
    if isinstance(val, (int, float)):
        # float -> Decimal via string to reduce binary wobble
        try:
            d = Decimal(str(val))
        except InvalidOperation:
            return None
        return d if d.is_finite() else None

    s = str(val).strip()
    if not s:
        return Decimal("0")

    m = _MONEY_RE.match(s)
    if not m:
        return None

    sign = "-" if (m.group("sign") == "-") else ""
    num = (m.group("num") or "0").replace(",", "")
    suffix = (m.group("suffix") or "").lower()

    try:
        d = Decimal(sign + num)
    except (InvalidOperation, ValueError):
        return None

    if suffix:
        d *= _SUFFIX_MULT.get(suffix, Decimal("1"))

    return d


def parse_cents(val: Any) -> Optional[int]:
    """
    Dollars-like input to integer cents (HALF_UP), or None when unparsable.

      "10.005" -> 1001
      "$1,250" -> 125000
      "abc"    -> None
    """
    d = _to_decimal(val)
    if d is None:
        return None
    return int((d * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(val: Any) -> int:
    """Lenient :func:`parse_cents`: junk becomes 0."""
    cents = parse_cents(val)
    return 0 if cents is None else cents


def normalize_donation_cents(cents: Any) -> int:
    """
    Clamp a donation to [0, MAX_DONATION_CENTS]. Amounts below the provider
    minimum (but above zero) are dropped to 0, i.e. no donation.
    """
    try:
        n = int(Decimal(str(cents)).to_integral_value(rounding=ROUND_FLOOR))
    except (InvalidOperation, ValueError, TypeError, OverflowError):
        return 0
    n = max(0, min(MAX_DONATION_CENTS, n))
    if 0 < n < PROVIDER_MIN_DONATION_CENTS:
        return 0
    return n


def safe_int(v: Any, default: int = 0) -> int:
    if v is None:
        return default
    try:
        s = str(v).strip()
        return int(s) if s else default
    except (TypeError, ValueError):
        return default


def safe_currency(raw: Any, default: str = "usd") -> str:
    c = str(raw or "").lower().strip()
    if len(c) == 3 and c.isalpha():
        return c
    return default


def clip(v: Any, n: int) -> Optional[str]:
    s = str(v).strip() if v is not None else ""
    return s[:n] if s else None
