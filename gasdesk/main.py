"""FastAPI application for gasdesk."""

import logging
from typing import Annotated

from fastapi import Body, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gasdesk.config import settings
from gasdesk.db.sqlite import InsufficientStockError, StockItemNotFoundError, db
from gasdesk.models import (
    DuplicateCheck,
    DuplicateReport,
    ImportResult,
    MonthlySummary,
    ReconcileResult,
    SettingsResponse,
    StockHistoryEntry,
    StockItem,
    StockItemCreate,
    StockUpdate,
    Transaction,
    TransactionCreate,
    TransactionPage,
    ValidationResult,
)
from gasdesk.parsers.validation import ValidationError
from gasdesk.services import stock as stock_service
from gasdesk.services import transactions as transaction_service
from gasdesk.services.importer import import_transactions
from gasdesk.services.reconcile import reconcile, validate_incoming_transaction

logger = logging.getLogger(__name__)

app = FastAPI(
    title="gasdesk",
    description="Gas cylinder retail transactions with duplicate reconciliation",
    version="0.1.0",
)

# CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    settings.ensure_directories()
    settings.log_config()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "transaction_count": db.get_transaction_count()}


@app.get("/transactions", response_model=TransactionPage)
async def get_transactions(
    month: str | None = None,
    search: str | None = None,
    search_field: str = "all",
    page: int = 1,
    page_size: int | None = None,
    hide_duplicates: bool = True,
):
    """Get a page of transactions, duplicates hidden by default."""
    try:
        return transaction_service.list_transactions(
            month=month,
            search=search,
            search_field=search_field,
            page=page,
            page_size=page_size,
            hide_duplicates=hide_duplicates,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/transactions", response_model=Transaction, status_code=201)
async def add_transaction(
    payload: Annotated[TransactionCreate, Body(discriminator="kind")],
    force: bool = False,
):
    """Record a sale or restock. Returns 409 for a suspected duplicate unless forced.

    Sales are refused with 409 when stock is too low, and with 400 when the
    gas type has no stock item.
    """
    try:
        return transaction_service.create_transaction(payload, force=force)
    except transaction_service.DuplicateTransactionError as e:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "This appears to be a duplicate transaction",
                "existingTransaction": e.existing.to_record(),
            },
        )
    except StockItemNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InsufficientStockError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.post("/transactions/validate", response_model=ValidationResult)
async def validate_transaction(candidate: DuplicateCheck):
    """Check whether a transaction would duplicate a recent one."""
    return validate_incoming_transaction(candidate)


@app.get("/transactions/duplicates", response_model=DuplicateReport)
async def get_duplicates():
    """Preview the duplicate groups currently stored."""
    return transaction_service.duplicate_report()


@app.post("/transactions/deduplicate", response_model=ReconcileResult)
async def deduplicate_transactions():
    """Remove duplicate transactions, keeping the earliest of each group."""
    result = reconcile()
    if not result.success:
        return JSONResponse(status_code=500, content=result.model_dump(mode="json", by_alias=True))
    return result


@app.get("/transactions/{transaction_id}", response_model=Transaction)
async def get_transaction(transaction_id: str):
    """Get a single transaction."""
    try:
        return transaction_service.get_transaction(transaction_id)
    except transaction_service.TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.delete("/transactions/{transaction_id}")
async def delete_transaction(transaction_id: str):
    """Delete a single transaction."""
    try:
        transaction_service.delete_transaction(transaction_id)
    except transaction_service.TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "deleted", "id": transaction_id}


@app.post("/import", response_model=ImportResult)
async def import_file(file: UploadFile = File(...)):
    """Import transactions from a CSV export or JSON backup."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    try:
        return import_transactions(file.filename, contents)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Import of {file.filename} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Error importing file: {str(e)}")


@app.get("/summary", response_model=MonthlySummary)
async def get_summary(month: str):
    """Get sales and restock totals for a month (YYYY-MM)."""
    try:
        return transaction_service.summarize_month(month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/stock", response_model=list[StockItem])
async def get_stock():
    """Get stock levels for every gas type."""
    return stock_service.list_stock()


@app.post("/stock", response_model=StockItem, status_code=201)
async def add_stock_item(payload: StockItemCreate):
    """Start tracking stock for a gas type."""
    try:
        return stock_service.add_stock_item(payload)
    except stock_service.StockItemExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.get("/stock/history", response_model=list[StockHistoryEntry])
async def get_stock_history(gas_type: str | None = None, limit: int = 50):
    """Get recent stock changes, newest first."""
    try:
        return stock_service.stock_history(gas_type, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/stock/{gas_type}", response_model=StockItem)
async def get_stock_item(gas_type: str):
    """Get the stock level for one gas type."""
    try:
        return stock_service.get_stock_item(gas_type)
    except StockItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.put("/stock/{gas_type}", response_model=StockHistoryEntry)
async def update_stock(gas_type: str, update: StockUpdate):
    """Set a stock level by hand."""
    try:
        return stock_service.update_stock_quantity(gas_type, update.stock, update.reason)
    except StockItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/settings", response_model=SettingsResponse)
async def get_settings():
    """Get current duplicate-detection settings."""
    return SettingsResponse(
        duplicate_window_ms=settings.duplicate_window_ms,
        presubmit_lookback_ms=settings.presubmit_lookback_ms,
        grouping_strategy=settings.grouping_strategy,
        page_size=settings.page_size,
        default_currency=settings.default_currency,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gasdesk.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.dev_mode,
    )
