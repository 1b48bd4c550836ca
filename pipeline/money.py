"""
Money and revenue parsing for search snippets and provider payloads.

Grammar for one amount (case-insensitive):

    amount   := [prefix] number [unit] [suffix]
    prefix   := US$ | USD | $ | A$ | AU$ | C$ | CA$ | HK$ | S$ | NZ$ | £ | GBP | € | EUR | ¥ | JPY | ₹ | INR
    number   := d{1,3}(,ddd)+[.d+] | d+[.d+]
    unit     := trillion | tn | billion | bn | b | million | mn | mm | m | thousand | k
    suffix   := USD | US dollars | dollars | GBP | pounds | EUR | euros | CAD | AUD | JPY | INR

A match only counts as money when it carries a currency marker or a unit, so
bare integers such as years ("2024") or ranks are never read as amounts.
Space-separated thousands ("1 200 000") are not supported.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

_PREFIXES = {
    "US$": "USD", "USD": "USD", "$": "USD",
    "A$": "AUD", "AU$": "AUD", "C$": "CAD", "CA$": "CAD",
    "HK$": "HKD", "S$": "SGD", "NZ$": "NZD",
    "£": "GBP", "GBP": "GBP", "€": "EUR", "EUR": "EUR",
    "¥": "JPY", "JPY": "JPY", "₹": "INR", "INR": "INR",
}

_SUFFIXES = {
    "usd": "USD", "us dollars": "USD", "dollars": "USD",
    "gbp": "GBP", "pounds": "GBP", "pound": "GBP",
    "eur": "EUR", "euros": "EUR", "euro": "EUR",
    "cad": "CAD", "aud": "AUD", "jpy": "JPY", "inr": "INR",
}

_UNITS = {
    "trillion": 1e12, "tn": 1e12,
    "billion": 1e9, "bn": 1e9, "b": 1e9,
    "million": 1e6, "mn": 1e6, "mm": 1e6, "m": 1e6,
    "thousand": 1e3, "k": 1e3,
}

MONEY_RE = re.compile(
    r"""
    (?:
        (?P<prefix>US\$|USD|AU\$|A\$|CA\$|C\$|HK\$|NZ\$|S\$|\$|GBP|£|EUR|€|JPY|¥|INR|₹)\s*
        |
        (?<![A-Za-z0-9.,])
    )
    (?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)
    (?:\s*(?P<unit>trillion|billion|million|thousand|tn|bn|mn|mm|b|m|k)(?![A-Za-z]))?
    (?:\s*(?P<suffix>US\ dollars|USD|dollars|GBP|pounds?|EUR|euros?|CAD|AUD|JPY|INR)(?![A-Za-z]))?
    """,
    re.IGNORECASE | re.VERBOSE,
)

REVENUE_KEYWORD_RE = re.compile(
    r"\b(?:annual\s+recurring\s+revenue|annual\s+revenue|revenues?|arr"
    r"|fy\s?\d{2,4}\s+revenue|fiscal\s+(?:year\s+)?\d{4}\s+revenue)\b",
    re.IGNORECASE,
)

YEAR_RE = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")

# Max characters between an amount and a revenue keyword for them to count
# as the same statement.
REVENUE_WINDOW = 120


@dataclass(frozen=True)
class MoneyAmount:
    value: float                 # number as written, before the unit
    multiplier: float
    currency: Optional[str]      # ISO-ish code, None when unlabelled
    start: int
    end: int
    text: str

    @property
    def amount(self) -> float:
        return self.value * self.multiplier

    @property
    def usd(self) -> Optional[float]:
        """Amount in USD, or None for figures labelled in another currency."""
        if self.currency not in (None, "USD"):
            return None
        return self.amount


def _currency(prefix: Optional[str], suffix: Optional[str]) -> Optional[str]:
    codes = []
    if prefix:
        codes.append(_PREFIXES.get(prefix.upper(), _PREFIXES.get(prefix)))
    if suffix:
        codes.append(_SUFFIXES.get(suffix.lower()))
    codes = [c for c in codes if c]
    if not codes:
        return None
    # "$40M CAD": any foreign label wins over the dollar sign.
    foreign = [c for c in codes if c != "USD"]
    return foreign[-1] if foreign else "USD"


def find_amounts(text: str) -> List[MoneyAmount]:
    """All money-like amounts in text, in order of appearance."""
    if not text:
        return []
    amounts = []
    for m in MONEY_RE.finditer(text):
        prefix, unit, suffix = m.group("prefix"), m.group("unit"), m.group("suffix")
        if not (prefix or unit or suffix):
            continue
        try:
            value = float(m.group("number").replace(",", ""))
        except ValueError:
            continue
        amounts.append(MoneyAmount(
            value=value,
            multiplier=_UNITS[unit.lower()] if unit else 1.0,
            currency=_currency(prefix, suffix),
            start=m.start(),
            end=m.end(),
            text=m.group(0).strip(),
        ))
    return amounts


def parse_money(text: str) -> Optional[MoneyAmount]:
    """First money-like amount in text."""
    amounts = find_amounts(text)
    return amounts[0] if amounts else None


def implies_revenue(text: str) -> bool:
    return bool(text and REVENUE_KEYWORD_RE.search(text))


def _distance(a_start: int, a_end: int, b_start: int, b_end: int) -> int:
    if a_end <= b_start:
        return b_start - a_end
    if b_end <= a_start:
        return a_start - b_end
    return 0


def find_revenue_figure(text: str, window: int = REVENUE_WINDOW) -> Optional[MoneyAmount]:
    """
    The amount sitting closest to a revenue keyword, within `window` characters.

    Funding totals or valuations mentioned elsewhere in the same snippet lose
    to whichever figure is nearest the word "revenue"/"ARR". The returned
    amount may still be in a foreign currency; check `.usd` before using it.
    """
    keywords = list(REVENUE_KEYWORD_RE.finditer(text or ""))
    if not keywords:
        return None
    best, best_distance = None, None
    for amount in find_amounts(text):
        distance = min(_distance(amount.start, amount.end, k.start(), k.end()) for k in keywords)
        if distance > window:
            continue
        if best_distance is None or distance < best_distance:
            best, best_distance = amount, distance
    return best


def extract_year(text: str, near: Optional[int] = None) -> Optional[int]:
    """A plausible year in text; the one closest to `near` when given."""
    latest = datetime.now().year + 1
    years = [(m.start(), int(m.group(1))) for m in YEAR_RE.finditer(text or "")]
    years = [(pos, y) for pos, y in years if 1990 <= y <= latest]
    if not years:
        return None
    if near is None:
        return years[0][1]
    return min(years, key=lambda item: abs(item[0] - near))[1]


def coerce_number(value: Any) -> Optional[float]:
    """Numbers pass through; strings like "$1,200,000" lose their decoration."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value == value and value not in (float("inf"), float("-inf")) else None
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d.]", "", value)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def format_usd(value: float) -> str:
    return f"${round(value):,}"
