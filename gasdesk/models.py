"""Data models for gasdesk."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive timestamps as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model using the camelCase field names of persisted records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionKind(str, Enum):
    """Tagged variants of a transaction record."""

    CASH = "cash"
    CREDIT = "credit"
    CARD = "card"
    RESTOCK = "restock"


class CardDetails(CamelModel):
    """Card metadata attached to card and credit sales."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    card_number: str | None = None
    card_type: str | None = None
    expiry_date: str | None = None
    name_on_card: str | None = None


class Transaction(CamelModel):
    """A recorded sale or restock of gas."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",  # Unknown persisted fields pass through untouched
    )

    id: str
    date: datetime  # Event time chosen by the creator, not the write time
    gas_type: str
    kgs: float
    payment_method: str
    total: float = 0.0
    currency: str = "USD"
    created_at: datetime | None = None

    # Credit sale fields
    customer_name: str | None = None
    phone_number: str | None = None
    due_date: datetime | None = None
    paid: bool | None = None
    paid_date: datetime | None = None
    card_details: CardDetails | None = None

    # Restock fields
    is_restock: bool | None = None
    reason: str | None = None

    @field_validator("date", "created_at", "due_date", "paid_date")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def kind(self) -> TransactionKind:
        """Classify the record; dedup fields are common to every variant."""
        if self.is_restock:
            return TransactionKind.RESTOCK
        method = self.payment_method.strip().lower()
        if method == "credit":
            return TransactionKind.CREDIT
        if method == "card":
            return TransactionKind.CARD
        return TransactionKind.CASH

    def to_record(self) -> dict[str, Any]:
        """Serialize with persisted field names, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class _TransactionCreateBase(CamelModel):
    gas_type: str = Field(min_length=1)
    kgs: float = Field(gt=0)
    total: float = Field(ge=0)
    currency: str | None = None
    date: datetime = Field(default_factory=utc_now)

    @field_validator("date")
    @classmethod
    def _normalize_date(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def _base_fields(self, transaction_id: str, default_currency: str) -> dict[str, Any]:
        return {
            "id": transaction_id,
            "date": self.date,
            "gas_type": self.gas_type,
            "kgs": self.kgs,
            "total": self.total,
            "currency": self.currency or default_currency,
            "created_at": utc_now(),
        }


class CashSaleCreate(_TransactionCreateBase):
    """Immediately settled sale (cash, mobile money, bank transfer)."""

    kind: Literal["cash"] = "cash"
    payment_method: str = "Cash"

    def to_transaction(self, transaction_id: str, default_currency: str = "USD") -> Transaction:
        return Transaction(
            **self._base_fields(transaction_id, default_currency),
            payment_method=self.payment_method,
        )


class CreditSaleCreate(_TransactionCreateBase):
    """Sale on credit, recorded unpaid until settled."""

    kind: Literal["credit"] = "credit"
    payment_method: str = "Credit"
    customer_name: str = Field(min_length=1)
    phone_number: str
    due_date: datetime

    def to_transaction(self, transaction_id: str, default_currency: str = "USD") -> Transaction:
        return Transaction(
            **self._base_fields(transaction_id, default_currency),
            payment_method=self.payment_method,
            customer_name=self.customer_name,
            phone_number=self.phone_number,
            due_date=self.due_date,
            paid=False,
            card_details=CardDetails(),
        )


class CardSaleCreate(_TransactionCreateBase):
    """Card sale."""

    kind: Literal["card"] = "card"
    payment_method: str = "Card"
    card_details: CardDetails | None = None

    def to_transaction(self, transaction_id: str, default_currency: str = "USD") -> Transaction:
        return Transaction(
            **self._base_fields(transaction_id, default_currency),
            payment_method=self.payment_method,
            card_details=self.card_details,
        )


class RestockCreate(_TransactionCreateBase):
    """Stock received from a supplier."""

    kind: Literal["restock"] = "restock"
    payment_method: str = "Cash"
    reason: str | None = None

    def to_transaction(self, transaction_id: str, default_currency: str = "USD") -> Transaction:
        return Transaction(
            **self._base_fields(transaction_id, default_currency),
            payment_method=self.payment_method,
            is_restock=True,
            reason=self.reason,
        )


# Discriminated on "kind"
TransactionCreate = Union[CashSaleCreate, CreditSaleCreate, CardSaleCreate, RestockCreate]


class DuplicateCheck(CamelModel):
    """Candidate fields examined by the pre-submit duplicate guard."""

    gas_type: str
    kgs: float
    payment_method: str
    date: datetime | None = None  # None means "now"

    @field_validator("date")
    @classmethod
    def _normalize_date(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class ReconcileResult(CamelModel):
    """Outcome of a duplicate cleanup run."""

    success: bool
    message: str
    removed_count: int = 0
    error: str | None = None
    duplicate_groups: list[list[Transaction]] = Field(default_factory=list)


class ValidationResult(CamelModel):
    """Outcome of the pre-submit duplicate guard."""

    success: bool
    is_duplicate: bool
    message: str
    existing_transaction: Transaction | None = None
    error: str | None = None


class DuplicateReport(CamelModel):
    """Non-destructive preview of the duplicate groups currently stored."""

    group_count: int
    removable_count: int
    groups: list[list[Transaction]]


class TransactionPage(CamelModel):
    """One page of the de-duplicated transaction list."""

    items: list[Transaction]
    total: int
    page: int
    page_size: int
    total_pages: int
    duplicates_hidden: int = 0
    duplicate_group_count: int = 0


class GasTypeSummary(CamelModel):
    """Sales and restock totals for one gas type."""

    gas_type: str
    sales_count: int = 0
    kgs_sold: float = 0.0
    revenue: float = 0.0
    kgs_restocked: float = 0.0


class MonthlySummary(CamelModel):
    """Analytics for a single month."""

    month: str
    transaction_count: int
    revenue: float
    outstanding_credit: float
    by_gas_type: list[GasTypeSummary]


class ImportResult(CamelModel):
    """Response after a transaction import."""

    filename: str
    imported: int
    skipped: int
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    message: str


class SettingsResponse(CamelModel):
    """Current duplicate-detection settings."""

    duplicate_window_ms: int
    presubmit_lookback_ms: int
    grouping_strategy: str
    page_size: int
    default_currency: str


class StockItem(CamelModel):
    """Current stock level and unit price of one gas type."""

    gas_type: str
    price: float  # Suggested price per kg
    stock: float  # Kilograms on hand
    last_updated: datetime | None = None

    @field_validator("last_updated")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class StockItemCreate(CamelModel):
    """Request to start tracking a gas type."""

    gas_type: str = Field(min_length=1)
    price: float = Field(ge=0)
    stock: float = Field(default=0.0, ge=0)


class StockUpdate(CamelModel):
    """Manual correction of a stock level."""

    stock: float = Field(ge=0)
    reason: str = "Manual update"


class StockHistoryEntry(CamelModel):
    """One change to a stock level."""

    id: int
    gas_type: str
    timestamp: datetime
    previous_stock: float
    new_stock: float
    change_amount: float
    reason: str
    transaction_id: str | None = None
