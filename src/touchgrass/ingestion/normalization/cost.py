"""
Cost Parser.

Parses event cost values into the canonical Cost structure:
- nested {"type", "currency", "amount"} objects (crawler payloads)
- plain numbers
- price text ("$25", "Free", "$10-$20", "15-25 EUR", "No cover")

Parsing is total: any input yields a Cost with a finite, non-negative amount.
Currencies are identified, never converted.
"""

from __future__ import annotations

import logging
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from touchgrass.schemas.event import Cost, CostType

logger = logging.getLogger(__name__)

_MAX_NESTING = 3


class CostParser:
    """
    Parse price strings and identify currency.

    Does NOT convert currencies - keeps original values.
    """

    # Multi-character symbols first so "R$" is not read as "$"
    SYMBOL_TO_CODE = {
        "R$": "BRL",
        "A$": "AUD",
        "C$": "CAD",
        "US$": "USD",
        "$": "USD",
        "€": "EUR",
        "£": "GBP",
        "¥": "JPY",
    }

    CURRENCY_PATTERNS = {
        "USD": [r"\busd\b", r"\bdollars?\b", r"\bbucks\b"],
        "EUR": [r"\beur\b", r"\beuros?\b"],
        "GBP": [r"\bgbp\b", r"\bpounds?\b"],
        "CAD": [r"\bcad\b"],
    }

    FREE_INDICATORS = (
        "free",
        "no charge",
        "no cover",
        "complimentary",
        "gratis",
        "$0 ",
    )

    @classmethod
    def parse_price_string(
        cls, price_str: str
    ) -> tuple[Decimal | None, Decimal | None, str, bool]:
        """
        Parse a price string into (min_price, max_price, currency_code, is_free).

        Handles:
        - "$25" -> (25, None, "USD", False)
        - "$10-$20" -> (10, 20, "USD", False)
        - "15-25 EUR" -> (15, 25, "EUR", False)
        - "Free" / "Free admission" -> (None, None, "", True)
        - "$1,250" -> (1250, None, "USD", False)
        - "TBD" -> (None, None, "", False)

        Args:
            price_str: Price text to parse

        Returns:
            Tuple of (min_price, max_price, currency_code, is_free); currency is
            "" when none was detected
        """
        if not price_str or not price_str.strip():
            return None, None, "", False

        price_str = price_str.strip()

        if cls.is_free(price_str):
            return None, None, "", True

        currency = cls.detect_currency(price_str)
        numbers = cls.extract_numbers(price_str)

        if not numbers:
            return None, None, currency, False
        if len(numbers) == 1:
            return numbers[0], None, currency, False
        return numbers[0], max(numbers), currency, False

    @classmethod
    def detect_currency(cls, price_str: str) -> str:
        """
        Detect currency from price string.

        Returns:
            ISO currency code (e.g., "USD") or empty string if not detected
        """
        if not price_str:
            return ""

        for symbol, code in cls.SYMBOL_TO_CODE.items():
            if symbol in price_str:
                return code

        price_lower = price_str.lower()
        for code, patterns in cls.CURRENCY_PATTERNS.items():
            if any(re.search(pattern, price_lower) for pattern in patterns):
                return code

        return ""

    @classmethod
    def is_free(cls, price_str: str) -> bool:
        """Check if price text indicates a free event."""
        price_lower = f"{price_str.lower().strip()} "
        return any(indicator in price_lower for indicator in cls.FREE_INDICATORS)

    @classmethod
    def extract_numbers(cls, price_str: str) -> list[Decimal]:
        """
        Extract numeric values from price text, in order of appearance.

        Handles:
        - "25" -> [25]
        - "12.50" -> [12.50]
        - "1,250" -> [1250] (thousands separator)
        - "12,50" -> [12.50] (decimal comma)
        - "$10-$20" -> [10, 20]
        """
        numbers = []
        for match in re.findall(r"\d+(?:[.,]\d+)*", price_str):
            number = cls._to_decimal(match)
            if number is not None:
                numbers.append(number)
        return numbers

    @staticmethod
    def _to_decimal(token: str) -> Decimal | None:
        if re.fullmatch(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?", token):
            token = token.replace(",", "")
        else:
            token = token.replace(",", ".")
        try:
            number = Decimal(token)
        except InvalidOperation:
            return None
        return number if number.is_finite() else None


def parse_cost_amount(value: Any, _depth: int = 0) -> float:
    """
    Coerce any cost amount to a finite, non-negative float.

    Strings lose currency symbols, ranges keep their first number and "Free"
    becomes 0. Anything unusable (NaN, negatives, nested junk) is 0.
    """
    if isinstance(value, bool) or value is None:
        return 0.0

    if isinstance(value, (int, float, Decimal)):
        return _finite_non_negative(value)

    if isinstance(value, str):
        if CostParser.is_free(value):
            return 0.0
        numbers = CostParser.extract_numbers(value)
        return _finite_non_negative(numbers[0]) if numbers else 0.0

    if isinstance(value, dict) and _depth < _MAX_NESTING:
        return parse_cost_amount(value.get("amount"), _depth + 1)

    return 0.0


def normalize_cost(value: Any, default_currency: str = "USD") -> Cost:
    """
    Normalize any cost representation to a Cost.

    Rules:
    - absent or free text -> {free, 0}
    - a single price -> {fixed, amount}
    - a price range -> {variable, lower bound}
    - unreadable text or unexpected types -> {variable, 0}, raw text kept

    Args:
        value: Cost object, dict, number, string or None
        default_currency: Currency used when none is given or detected

    Returns:
        Cost instance
    """
    if isinstance(value, Cost):
        return value

    if value is None or isinstance(value, bool):
        return Cost(type=CostType.FREE, currency=default_currency, amount=0)

    if isinstance(value, (int, float, Decimal)):
        amount = _finite_non_negative(value)
        cost_type = CostType.FIXED if amount > 0 else CostType.FREE
        return Cost(type=cost_type, currency=default_currency, amount=amount)

    if isinstance(value, str):
        return _cost_from_text(value, default_currency)

    if isinstance(value, dict):
        return _cost_from_mapping(value, default_currency)

    logger.debug(f"Unexpected cost type {type(value).__name__}, treating as variable")
    return Cost(type=CostType.VARIABLE, currency=default_currency, amount=0)


def _cost_from_text(text: str, default_currency: str) -> Cost:
    if not text.strip():
        return Cost(type=CostType.FREE, currency=default_currency, amount=0)

    min_price, max_price, currency, is_free = CostParser.parse_price_string(text)
    currency = currency or default_currency

    if is_free:
        return Cost(type=CostType.FREE, currency=currency, amount=0)

    if min_price is None:
        logger.debug(f"Could not read a price from {text!r}")
        return Cost(
            type=CostType.VARIABLE, currency=currency, amount=0, raw_text=text.strip()
        )

    amount = _finite_non_negative(min_price)
    if max_price is not None and max_price != min_price:
        cost_type = CostType.VARIABLE
    elif amount > 0:
        cost_type = CostType.FIXED
    else:
        cost_type = CostType.FREE
    return Cost(type=cost_type, currency=currency, amount=amount, raw_text=text.strip())


def _cost_from_mapping(raw: dict, default_currency: str) -> Cost:
    raw_amount = raw.get("amount")
    currency = raw.get("currency")
    if not isinstance(currency, str) or not currency.strip():
        currency = (
            CostParser.detect_currency(raw_amount) if isinstance(raw_amount, str) else ""
        ) or default_currency

    amount = parse_cost_amount(raw_amount)

    declared = raw.get("type")
    try:
        cost_type = CostType(declared.strip().lower()) if isinstance(declared, str) else None
    except ValueError:
        cost_type = None

    if cost_type is None:
        is_range = (
            isinstance(raw_amount, str)
            and len(CostParser.extract_numbers(raw_amount)) > 1
        )
        if is_range:
            cost_type = CostType.VARIABLE
        else:
            cost_type = CostType.FIXED if amount > 0 else CostType.FREE

    if cost_type == CostType.FREE:
        amount = 0.0

    raw_text = raw.get("raw_text")
    return Cost(
        type=cost_type,
        currency=currency.strip().upper(),
        amount=amount,
        raw_text=raw_text if isinstance(raw_text, str) else None,
    )


def _finite_non_negative(value: int | float | Decimal) -> float:
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number
