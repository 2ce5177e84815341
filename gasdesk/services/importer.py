"""Import transactions from CSV exports and JSON backups."""

import csv
import json
from io import StringIO
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError

from gasdesk.config import settings
from gasdesk.db.sqlite import db
from gasdesk.models import ImportResult, Transaction, utc_now
from gasdesk.parsers.validation import (
    ParseResult,
    ValidationError,
    decode_contents,
    log_parse_result,
    logger,
    parse_amount_safe,
    parse_timestamp,
    validate_csv_contents,
)

# Accepted header spellings, normalized to lowercase without spaces/underscores
HEADER_ALIASES = {
    "gastype": "gas_type",
    "gas": "gas_type",
    "kgs": "kgs",
    "quantity": "kgs",
    "total": "total",
    "totalprice": "total",
    "currency": "currency",
    "paymentmethod": "payment_method",
    "payment": "payment_method",
    "date": "date",
    "customername": "customer_name",
    "phonenumber": "phone_number",
}


def _normalize_header(header: str) -> str:
    return header.strip().lower().replace(" ", "").replace("_", "")


def _build_header_map(fieldnames: list[str]) -> dict[str, str]:
    """Map our field names to the actual headers present in the file."""
    header_map: dict[str, str] = {}
    for header in fieldnames:
        field = HEADER_ALIASES.get(_normalize_header(header))
        if field and field not in header_map:
            header_map[field] = header
    return header_map


def _get_field(row: dict[str, str], header_map: dict[str, str], field: str) -> str:
    header = header_map.get(field)
    return (row.get(header) or "").strip() if header else ""


def parse_transactions_csv(contents: bytes) -> ParseResult:
    """
    Parse a CSV of sales into transactions.

    Required columns: gasType, kgs (or quantity), total (or totalPrice).
    Optional: currency, paymentMethod (defaults to Cash), date (defaults to
    now), customerName, phoneNumber.

    Raises:
        ValidationError: If the file cannot be parsed at all
    """
    result = ParseResult(transactions=[])
    text = validate_csv_contents(contents)

    delimiter = "\t" if "," not in text.split("\n", 1)[0] else ","
    reader = csv.DictReader(StringIO(text), delimiter=delimiter)
    header_map = _build_header_map(reader.fieldnames or [])

    missing = [f for f in ("gas_type", "kgs", "total") if f not in header_map]
    if missing:
        raise ValidationError(f"Missing required headers: {', '.join(missing)}")

    now = utc_now()
    for row in reader:
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        result.total_rows_processed += 1
        line = result.total_rows_processed

        extra_values = row.pop(None, None) or []
        missing_values = sum(value is None for value in row.values())
        if extra_values or missing_values:
            found = len(reader.fieldnames) + len(extra_values) - missing_values
            result.rows_skipped += 1
            result.errors.append(f"Row {line}: Expected {len(reader.fieldnames)} columns, found {found}")
            continue

        gas_type = _get_field(row, header_map, "gas_type")
        if not gas_type:
            result.rows_skipped += 1
            result.warnings.append(f"Row {line}: Missing gas type")
            continue

        kgs, kgs_valid = parse_amount_safe(_get_field(row, header_map, "kgs"))
        if not kgs_valid or kgs <= 0:
            result.rows_skipped += 1
            result.warnings.append(f"Row {line}: Invalid quantity '{_get_field(row, header_map, 'kgs')}'")
            continue

        total, total_valid = parse_amount_safe(_get_field(row, header_map, "total"))
        if not total_valid:
            result.rows_skipped += 1
            result.warnings.append(f"Row {line}: Invalid total '{_get_field(row, header_map, 'total')}'")
            continue

        date_str = _get_field(row, header_map, "date")
        txn_date = parse_timestamp(date_str) if date_str else now
        if txn_date is None:
            result.rows_skipped += 1
            result.warnings.append(f"Row {line}: Invalid date '{date_str}'")
            continue

        result.transactions.append(
            Transaction(
                id=str(uuid4()),
                date=txn_date,
                gas_type=gas_type,
                kgs=kgs,
                total=total,
                currency=_get_field(row, header_map, "currency") or settings.default_currency,
                payment_method=_get_field(row, header_map, "payment_method") or settings.default_payment_method,
                created_at=now,
                customer_name=_get_field(row, header_map, "customer_name") or None,
                phone_number=_get_field(row, header_map, "phone_number") or None,
            )
        )

    log_parse_result(result, "CSV import")
    return result


def parse_transactions_json(contents: bytes) -> ParseResult:
    """
    Parse a JSON backup (``{"transactions": [...]}``) into transactions.

    Credit, card and restock fields are kept; each record gets a fresh id.

    Raises:
        ValidationError: If the file is not a JSON backup
    """
    result = ParseResult(transactions=[])
    try:
        data = json.loads(decode_contents(contents))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON: {e}") from e

    records = data.get("transactions") if isinstance(data, dict) else None
    if not isinstance(records, list):
        raise ValidationError("Invalid backup format: 'transactions' list not found")

    now = utc_now()
    for index, record in enumerate(records, start=1):
        result.total_rows_processed += 1
        if not isinstance(record, dict):
            result.rows_skipped += 1
            result.errors.append(f"Record {index}: Not an object")
            continue

        fields: dict[str, Any] = {k: v for k, v in record.items() if k not in ("id", "userId")}
        fields.setdefault("currency", settings.default_currency)
        fields.setdefault("paymentMethod", settings.default_payment_method)
        fields.setdefault("date", now.isoformat())
        fields.setdefault("createdAt", now.isoformat())
        try:
            result.transactions.append(Transaction(id=str(uuid4()), **fields))
        except ModelValidationError as e:
            result.rows_skipped += 1
            fields_failed = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            result.errors.append(f"Record {index}: {e.error_count()} invalid field(s): {fields_failed}")

    log_parse_result(result, "JSON import")
    return result


def import_transactions(filename: str, contents: bytes) -> ImportResult:
    """
    Import a CSV or JSON file. All parsed transactions are written in one batch.

    Raises:
        ValidationError: If the file type is unsupported or unparseable
    """
    filename_lower = filename.lower()
    if filename_lower.endswith(".csv"):
        result = parse_transactions_csv(contents)
    elif filename_lower.endswith(".json"):
        result = parse_transactions_json(contents)
    else:
        raise ValidationError("Only CSV and JSON files are supported")

    if not result.transactions:
        raise ValidationError("No valid transactions found in the file")

    imported = db.add_transactions_batch(result.transactions)
    logger.info(f"Imported {imported} transactions from {filename}")

    return ImportResult(
        filename=filename,
        imported=imported,
        skipped=result.rows_skipped,
        warnings=result.warnings,
        errors=result.errors,
        message=f"{imported} transactions have been imported",
    )
