"""
Numeric parser service for statutory account values.

Handles parsing of numeric values in the formats found in Luxembourg filings:
- European and American separators: 1.234.567,89 / 1,234,567.89
- Negative notation: (123), -123, 123-
- Currency markers: €, EUR
- Percentages and interest rates: 12,5 %, 3.25%, 150 bps
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ParsedNumber:
    """Result of parsing a numeric string."""

    value: Optional[Decimal]
    raw_value: str
    confidence: float
    is_negative: bool = False
    currency: Optional[str] = None
    is_percentage: bool = False


@dataclass(frozen=True)
class InterestRate:
    """An interest rate normalized to a decimal fraction (0.0325 for 3.25%)."""

    rate: Optional[Decimal]
    raw_value: str
    format: str  # "percentage", "basis_points", "decimal"
    confidence: float


class NumericParser:
    """
    Parser for statutory account values.

    Separator disambiguation looks at the digit run after the last separator:
    two digits mean a decimal separator, three digits a thousands separator,
    and when both separators occur the rightmost one is the decimal.
    """

    # Currency markers stripped before parsing
    CURRENCY_SYMBOLS = ("€", "$", "£", "¥")

    # Thousands-grouping characters that never act as decimal separators
    GROUPING_CHARS = (" ", "\u00a0", "\u202f", "'", "\u2019")

    MINUS_SIGNS = ("-", "−", "–")

    # Regex patterns
    PARENTHESES_PATTERN = re.compile(r"^\s*\(([^)]*)\)\s*$")
    PERCENTAGE_PATTERN = re.compile(r"%\s*$")
    CURRENCY_CODE_PATTERN = re.compile(r"\b(EUR|USD|GBP|CHF)\b", re.IGNORECASE)
    DIGITS_PATTERN = re.compile(r"^[\d.,]+$")
    BASIS_POINTS_PATTERN = re.compile(r"\s*(?:bps?|basis\s*points?)\s*$", re.IGNORECASE)

    # A numeric token inside free text; grouping spaces must be non-breaking
    TEXT_NUMBER_PATTERN = re.compile(
        r"\(?[-\u2212]?\d(?:[\d.,'\u00a0\u202f]*\d)?\)?"
    )

    def parse(self, value_str: str) -> ParsedNumber:
        """
        Parse a string value into a numeric result.

        Never raises: an unreadable value comes back with ``value=None`` and
        confidence 0.

        Args:
            value_str: The string to parse.

        Returns:
            ParsedNumber with parsed value and metadata.
        """
        if not value_str or not value_str.strip():
            return ParsedNumber(value=None, raw_value=value_str or "", confidence=0.0)

        original = value_str
        value_str = value_str.strip()

        # Currency markers may sit on either side of the sign
        value_str, currency = self._strip_currency(value_str)

        # Check for negative (parentheses notation)
        is_negative = False
        paren_match = self.PARENTHESES_PATTERN.match(value_str)
        if paren_match:
            value_str = paren_match.group(1).strip()
            is_negative = True

        # Leading or trailing minus
        if value_str[:1] in self.MINUS_SIGNS:
            is_negative = True
            value_str = value_str[1:].strip()
        elif value_str[-1:] in self.MINUS_SIGNS:
            is_negative = True
            value_str = value_str[:-1].strip()
        elif value_str.startswith("+"):
            value_str = value_str[1:].strip()

        if currency is None:
            value_str, currency = self._strip_currency(value_str)

        # Check for percentage
        is_percentage = False
        if self.PERCENTAGE_PATTERN.search(value_str):
            is_percentage = True
            value_str = self.PERCENTAGE_PATTERN.sub("", value_str).strip()

        for char in self.GROUPING_CHARS:
            value_str = value_str.replace(char, "")

        if not value_str:
            # A lone dash or empty parentheses is a printed nil, not a number
            return ParsedNumber(value=None, raw_value=original, confidence=0.0)

        parsed_value, confidence = self._parse_number(value_str)

        if parsed_value is None:
            logger.warning("Failed to parse number", value=original)
        elif is_negative:
            parsed_value = -parsed_value

        return ParsedNumber(
            value=parsed_value,
            raw_value=original,
            confidence=confidence,
            is_negative=is_negative and parsed_value is not None,
            currency=currency,
            is_percentage=is_percentage,
        )

    def _strip_currency(self, value_str: str) -> Tuple[str, Optional[str]]:
        """Remove one currency symbol or ISO code from either end of the string."""
        for symbol in self.CURRENCY_SYMBOLS:
            if value_str.startswith(symbol):
                return value_str[len(symbol):].strip(), symbol
            if value_str.endswith(symbol):
                return value_str[:-len(symbol)].strip(), symbol

        match = self.CURRENCY_CODE_PATTERN.search(value_str)
        if match and (match.start() == 0 or match.end() == len(value_str)):
            stripped = (value_str[:match.start()] + value_str[match.end():]).strip()
            return stripped, match.group(1).upper()

        return value_str, None

    def _parse_number(self, value_str: str) -> Tuple[Optional[Decimal], float]:
        """
        Parse a cleaned numeric string into a Decimal.

        Args:
            value_str: Cleaned string containing only digits and separators.

        Returns:
            Tuple of (parsed Decimal or None, confidence score).
        """
        if not self.DIGITS_PATTERN.match(value_str) or not any(c.isdigit() for c in value_str):
            return None, 0.0

        comma_count = value_str.count(",")
        period_count = value_str.count(".")

        try:
            if comma_count == 0 and period_count == 0:
                # Plain integer: 1234
                return Decimal(value_str), 1.0

            if comma_count >= 1 and period_count >= 1:
                # Both present: the rightmost separator is the decimal
                if value_str.rfind(".") > value_str.rfind(","):
                    cleaned = value_str.replace(",", "")
                else:
                    cleaned = value_str.replace(".", "").replace(",", ".")
                if cleaned.count(".") > 1:
                    return None, 0.0
                return Decimal(cleaned), 0.95

            separator = "," if comma_count else "."
            count = comma_count or period_count

            if count > 1:
                # Repeated single separator can only be thousands grouping:
                # 1,234,567 (American) or 1.234.567 (European)
                if not self._is_thousand_separator(value_str, separator):
                    return None, 0.0
                return Decimal(value_str.replace(separator, "")), 0.85

            integer_part, fraction_part = value_str.split(separator)

            if len(fraction_part) == 2:
                return Decimal(f"{integer_part or '0'}.{fraction_part}"), 0.9

            if len(fraction_part) == 3 and integer_part.lstrip("0"):
                # 1,234 (American) or 1.234 (European) thousands
                return Decimal(integer_part + fraction_part), 0.6

            if not fraction_part:
                return Decimal(integer_part), 0.7

            return Decimal(f"{integer_part or '0'}.{fraction_part}"), 0.7

        except (InvalidOperation, ValueError) as e:
            logger.warning("Failed to parse number", value=value_str, error=str(e))
            return None, 0.0

    def _is_thousand_separator(self, value_str: str, separator: str) -> bool:
        """
        Check if a separator is being used as thousand separator.

        Args:
            value_str: The string to check.
            separator: The separator character.

        Returns:
            True if separator appears to be thousand separator.
        """
        parts = value_str.split(separator)

        # For thousand separator, all parts after first should be exactly 3 digits
        if len(parts) < 2 or not (1 <= len(parts[0]) <= 3):
            return False

        for part in parts[1:]:
            if len(part) != 3 or not part.isdigit():
                return False

        return True

    def parse_batch(self, values: List[str]) -> List[ParsedNumber]:
        """
        Parse multiple values.

        Args:
            values: List of strings to parse.

        Returns:
            List of ParsedNumber results.
        """
        return [self.parse(v) for v in values]

    def parse_percentage(self, value_str: str) -> ParsedNumber:
        """Parse a percentage and return it as a decimal fraction (12,5 % -> 0.125)."""
        parsed = self.parse(value_str)
        if parsed.value is None:
            return parsed
        return ParsedNumber(
            value=parsed.value / 100,
            raw_value=parsed.raw_value,
            confidence=parsed.confidence,
            is_negative=parsed.is_negative,
            currency=parsed.currency,
            is_percentage=True,
        )

    def parse_interest_rate(self, value_str: str) -> InterestRate:
        """
        Parse an interest rate quoted in percent, basis points or as a fraction.

        Bare numbers are ambiguous: values in (0, 1) are read as fractions,
        values in [1, 100) as percent, anything else as percent at low confidence.
        """
        raw = (value_str or "").strip()

        if self.BASIS_POINTS_PATTERN.search(raw):
            parsed = self.parse(self.BASIS_POINTS_PATTERN.sub("", raw))
            rate = parsed.value / 10000 if parsed.value is not None else None
            return InterestRate(rate, raw, "basis_points", parsed.confidence * 0.9)

        if self.PERCENTAGE_PATTERN.search(raw):
            parsed = self.parse_percentage(raw)
            return InterestRate(parsed.value, raw, "percentage", parsed.confidence * 0.9)

        parsed = self.parse(raw)
        if parsed.value is None:
            return InterestRate(None, raw, "percentage", 0.0)
        if 0 < parsed.value < 1:
            return InterestRate(parsed.value, raw, "decimal", 0.7)
        if 1 <= parsed.value < 100:
            return InterestRate(parsed.value / 100, raw, "percentage", 0.6)
        return InterestRate(parsed.value / 100, raw, "percentage", 0.4)

    def extract_numbers(self, text: str) -> List[ParsedNumber]:
        """
        Find and parse every numeric token in free text.

        Tokens separated by ordinary spaces are treated as distinct numbers.
        """
        results = []
        for match in self.TEXT_NUMBER_PATTERN.finditer(text or ""):
            parsed = self.parse(match.group(0))
            if parsed.value is not None:
                results.append(parsed)
        return results


def format_european(value: Decimal, decimals: int = 2) -> str:
    """Render a value with European separators (1234567.891 -> 1.234.567,89)."""
    quantum = Decimal(1).scaleb(-decimals)
    rendered = f"{abs(Decimal(value)).quantize(quantum):,.{decimals}f}"
    rendered = rendered.replace(",", "\x00").replace(".", ",").replace("\x00", ".")
    return f"-{rendered}" if value < 0 else rendered


# Singleton instance
_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance
