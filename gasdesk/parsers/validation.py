"""Shared validation utilities for transaction imports."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger("gasdesk.parsers")


@dataclass
class ParseResult:
    """Result of parsing an import file."""

    transactions: list[Any]
    total_rows_processed: int = 0
    rows_skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Calculate the parsing success rate."""
        if self.total_rows_processed == 0:
            return 0.0
        return (len(self.transactions) / self.total_rows_processed) * 100


class ValidationError(Exception):
    """Raised when validation fails."""

    pass


def validate_file_contents(contents: bytes, min_size: int = 10) -> None:
    """
    Validate file contents before parsing.

    Raises:
        ValidationError: If the file is empty or too small
    """
    if not contents:
        raise ValidationError("File is empty")

    if len(contents) < min_size:
        raise ValidationError(f"File too small ({len(contents)} bytes), minimum {min_size} bytes expected")


def decode_contents(contents: bytes) -> str:
    """Decode file bytes trying common encodings."""
    validate_file_contents(contents)

    for encoding in ("utf-8-sig", "latin-1", "cp1252"):
        try:
            return contents.decode(encoding)
        except UnicodeDecodeError:
            continue

    raise ValidationError("Could not decode file with any supported encoding (utf-8, latin-1, cp1252)")


def validate_csv_contents(contents: bytes) -> str:
    """
    Validate and decode CSV contents.

    Returns:
        Decoded text content

    Raises:
        ValidationError: If validation fails
    """
    text = decode_contents(contents)

    lines = text.strip().split("\n")
    if not lines or not lines[0].strip():
        raise ValidationError("CSV file has no content")

    # Check for comma or tab delimiter
    if "," not in lines[0] and "\t" not in lines[0]:
        raise ValidationError("File does not appear to be a valid CSV (no delimiters found)")

    return text


def validate_amount(amount: float, min_val: float = 0, max_val: float = 1_000_000) -> bool:
    """Validate that an amount is finite and within bounds."""
    if amount is None:
        return False

    # Check for NaN or infinity
    if amount != amount or abs(amount) == float("inf"):
        return False

    return min_val <= amount <= max_val


def clean_amount_string(amount_str: str) -> str:
    """Strip currency symbols, whitespace and thousand separators."""
    if not amount_str:
        return "0"

    cleaned = amount_str.strip()
    for symbol in ("$", "€", "£", "KES", "KSh", "kg", "KG", " "):
        cleaned = cleaned.replace(symbol, "")

    return cleaned.replace(",", "")


def parse_amount_safe(amount_str: str, default: float = 0.0) -> tuple[float, bool]:
    """
    Safely parse a money or quantity string.

    Returns:
        Tuple of (parsed amount, success flag)
    """
    try:
        cleaned = clean_amount_string(amount_str)
        if not cleaned:
            return default, False

        amount = float(cleaned)

        if not validate_amount(amount):
            return default, False

        return amount, True
    except (ValueError, TypeError):
        return default, False


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp ("Z" suffix allowed). Returns None if invalid."""
    if not value:
        return None
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def log_parse_result(result: ParseResult, parser_name: str) -> None:
    """Log parsing results for debugging."""
    logger.info(
        f"{parser_name}: Parsed {len(result.transactions)} transactions "
        f"(processed {result.total_rows_processed}, skipped {result.rows_skipped}, "
        f"{result.success_rate:.0f}% success)"
    )

    if result.errors:
        for error in result.errors[:5]:  # Log first 5 errors
            logger.warning(f"{parser_name}: {error}")

    if result.warnings:
        for warning in result.warnings[:5]:
            logger.debug(f"{parser_name}: {warning}")
