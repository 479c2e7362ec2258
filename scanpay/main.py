"""
FastAPI application exposing the cart, checkout and receipt store to the UI layer.
"""
import time
import logging
from datetime import datetime
from functools import lru_cache
from typing import List

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scanpay.cart_service import EMPTY_CART, CartRegistry, CartSession
from scanpay.checkout_service import CheckoutService, parse_receipt_reference
from scanpay.config import Config
from scanpay.exceptions import (
    CheckoutFailed,
    ProductNotFoundError,
    ServiceError,
    StorageError,
    ValidationError,
)
from scanpay.middleware import MetricsMiddleware
from scanpay.models import (
    CartResponse,
    CartState,
    CheckoutRequest,
    CheckoutResponse,
    ProductCandidate,
    Receipt,
    ReceiptScanRequest,
    ReceiptUpdate,
    SavedReceipt,
    ScanRequest,
    SpendingStats,
    StorageResult,
)
from scanpay.receipt_store import ReceiptStore, newest_first
from scanpay.storage import get_storage
from scanpay.transaction_client import TransactionClient

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="ScanPay API",
    description="Cart, checkout and receipt storage for the scan-and-pay app",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware
app.add_middleware(MetricsMiddleware)


# Services are built lazily so importing the app does not require Redis
@lru_cache
def get_cart_registry() -> CartRegistry:
    return CartRegistry()


@lru_cache
def get_transaction_client() -> TransactionClient:
    return TransactionClient()


@lru_cache
def get_checkout_service() -> CheckoutService:
    return CheckoutService(client=get_transaction_client())


@lru_cache
def get_receipt_store() -> ReceiptStore:
    return ReceiptStore(get_storage())


def get_cart_id(cart_id: str = Header(..., alias="X-Cart-ID", description="Cart identifier")) -> str:
    if not cart_id or not cart_id.strip():
        raise HTTPException(status_code=400, detail="Cart ID is required")
    return cart_id.strip()


def get_cart_session(
    cart_id: str = Depends(get_cart_id),
    registry: CartRegistry = Depends(get_cart_registry),
) -> CartSession:
    return registry.get(cart_id)


def cart_response(cart_id: str, state: CartState) -> CartResponse:
    return CartResponse(
        cart_id=cart_id,
        lines=list(state.lines),
        total=state.total,
        total_items=state.total_items,
    )


STORE_ERROR_STATUS = {"not_found": 404, "invalid": 400, "storage": 503}


def unwrap(result: StorageResult):
    """Return the result data or translate the store failure into an HTTP error"""
    if result.success:
        return result.data
    raise HTTPException(status_code=STORE_ERROR_STATUS.get(result.error_kind, 503), detail=result.error)


@app.get("/health")
async def health_check(store: ReceiptStore = Depends(get_receipt_store)):
    """Always 200; reports storage reachability"""
    ping_start = time.time()
    try:
        storage_ok = store.storage.ping()
    except StorageError as e:
        logger.warning(f"Storage ping failed: {e}")
        storage_ok = False
    return {
        "status": "healthy",
        "service": "scanpay-api",
        "storage": {
            "status": "healthy" if storage_ok else "unhealthy",
            "latency_ms": round((time.time() - ping_start) * 1000, 2),
        },
        "timestamp": time.time(),
    }


# Cart endpoints
@app.get("/cart", response_model=CartResponse)
async def get_cart(
    cart_id: str = Depends(get_cart_id),
    registry: CartRegistry = Depends(get_cart_registry),
):
    """Read-only: an unknown cart id reads as an empty cart"""
    return cart_response(cart_id, registry.snapshot(cart_id))


@app.post("/cart/items", response_model=CartResponse)
async def add_cart_item(
    candidate: ProductCandidate,
    cart_id: str = Depends(get_cart_id),
    session: CartSession = Depends(get_cart_session),
):
    """Add a product; an existing code gets its quantity bumped by one"""
    return cart_response(cart_id, session.add_item(candidate))


# Handlers that call the remote service are plain def and run in FastAPI's threadpool
@app.post("/cart/scan", response_model=CartResponse)
def scan_item(
    request: ScanRequest,
    cart_id: str = Depends(get_cart_id),
    session: CartSession = Depends(get_cart_session),
    client: TransactionClient = Depends(get_transaction_client),
):
    """Look the scanned code up in the item catalog and add it to the cart"""
    item = client.get_item(request.code.strip())
    return cart_response(cart_id, session.add_item(item.to_candidate()))


@app.delete("/cart/items/{code}", response_model=CartResponse)
async def remove_cart_item(
    code: str,
    cart_id: str = Depends(get_cart_id),
    session: CartSession = Depends(get_cart_session),
):
    return cart_response(cart_id, session.remove_item(code))


@app.post("/cart/items/{code}/increment", response_model=CartResponse)
async def increment_cart_item(
    code: str,
    cart_id: str = Depends(get_cart_id),
    session: CartSession = Depends(get_cart_session),
):
    return cart_response(cart_id, session.increment(code))


@app.post("/cart/items/{code}/decrement", response_model=CartResponse)
async def decrement_cart_item(
    code: str,
    cart_id: str = Depends(get_cart_id),
    session: CartSession = Depends(get_cart_session),
):
    """Decrement quantity; a line at quantity 1 is removed"""
    return cart_response(cart_id, session.decrement(code))


@app.delete("/cart", response_model=CartResponse)
async def clear_cart(
    cart_id: str = Depends(get_cart_id),
    registry: CartRegistry = Depends(get_cart_registry),
):
    registry.discard(cart_id)
    return cart_response(cart_id, EMPTY_CART)


# Checkout endpoints
@app.post("/checkout", response_model=CheckoutResponse)
def checkout(
    request: CheckoutRequest,
    http_request: Request,
    cart_id: str = Depends(get_cart_id),
    registry: CartRegistry = Depends(get_cart_registry),
    checkout_service: CheckoutService = Depends(get_checkout_service),
    store: ReceiptStore = Depends(get_receipt_store),
):
    """
    Submit the cart. On success the cart is cleared; when requested the receipt
    is saved too. A failed save is reported but does not restore the cart.
    """
    customer_ref = request.customer_ref or Config.DEFAULT_CUSTOMER_REF
    receipt = checkout_service.checkout(registry.snapshot(cart_id), customer_ref)
    registry.discard(cart_id)
    http_request.state.transaction_ref = receipt.transaction_id

    response = CheckoutResponse(receipt=receipt, cart_cleared=True)
    if request.save_receipt:
        result = store.save_receipt(receipt)
        if result.success:
            response.saved_receipt = result.data
        else:
            logger.error(f"Receipt {receipt.transaction_id} not saved: {result.error}")
            response.save_error = result.error
    return response


@app.get("/transactions/{transaction_id}", response_model=Receipt)
def get_transaction_receipt(
    transaction_id: str,
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
    receipt = checkout_service.lookup_receipt(transaction_id)
    if receipt is None:
        raise HTTPException(status_code=404, detail=f"No receipt found for transaction ID: {transaction_id}")
    return receipt


# Receipt endpoints
@app.post("/receipts/scan", response_model=Receipt)
def scan_receipt(
    request: ReceiptScanRequest,
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
    """Resolve a scanned receipt QR code into the receipt it points at"""
    transaction_id = parse_receipt_reference(request.data, checkout_service.client.base_url)
    if transaction_id is None:
        raise HTTPException(status_code=400, detail="The scanned QR code does not contain a valid transaction ID")
    receipt = checkout_service.lookup_receipt(transaction_id)
    if receipt is None:
        raise HTTPException(status_code=404, detail=f"No receipt found for transaction ID: {transaction_id}")
    return receipt


@app.post("/receipts", response_model=SavedReceipt, status_code=201)
async def save_receipt(receipt: Receipt, store: ReceiptStore = Depends(get_receipt_store)):
    return unwrap(store.save_receipt(receipt))


@app.get("/receipts", response_model=List[SavedReceipt])
async def list_receipts(store: ReceiptStore = Depends(get_receipt_store)):
    """Saved receipts, newest first"""
    return newest_first(unwrap(store.get_all_receipts()))


@app.get("/receipts/range", response_model=List[SavedReceipt])
async def receipts_by_date_range(
    start: datetime = Query(..., description="Inclusive lower bound on occurred_at"),
    end: datetime = Query(..., description="Inclusive upper bound on occurred_at"),
    store: ReceiptStore = Depends(get_receipt_store),
):
    return newest_first(unwrap(store.get_receipts_by_date_range(start, end)))


@app.get("/receipts/stats", response_model=SpendingStats)
async def receipt_stats(store: ReceiptStore = Depends(get_receipt_store)):
    return SpendingStats(
        total_spending=unwrap(store.get_total_spending()),
        receipts_count=unwrap(store.get_receipts_count()),
    )


@app.get("/receipts/{receipt_id}", response_model=SavedReceipt)
async def get_receipt(receipt_id: str, store: ReceiptStore = Depends(get_receipt_store)):
    return unwrap(store.get_receipt_by_id(receipt_id))


@app.patch("/receipts/{receipt_id}", response_model=SavedReceipt)
async def update_receipt(
    receipt_id: str,
    changes: ReceiptUpdate,
    store: ReceiptStore = Depends(get_receipt_store),
):
    return unwrap(store.update_receipt(receipt_id, changes))


@app.delete("/receipts/{receipt_id}")
async def delete_receipt(receipt_id: str, store: ReceiptStore = Depends(get_receipt_store)):
    return {"success": unwrap(store.delete_receipt(receipt_id))}


@app.delete("/receipts")
async def clear_receipts(store: ReceiptStore = Depends(get_receipt_store)):
    return {"success": unwrap(store.clear_all_receipts())}


# Error handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc)}
    )


@app.exception_handler(ProductNotFoundError)
async def product_not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Product not found", "message": str(exc)}
    )


@app.exception_handler(CheckoutFailed)
async def checkout_failed_handler(request, exc):
    request.state.transaction_ref = exc.transaction_ref
    return JSONResponse(
        status_code=502,
        content={
            "error": "Checkout failed",
            "message": "Could not complete checkout. Please try again.",
            "transaction_ref": exc.transaction_ref,
        }
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request, exc):
    return JSONResponse(
        status_code=502,
        content={"error": "Service unavailable", "message": str(exc)}
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc):
    return JSONResponse(
        status_code=503,
        content={"error": "Storage unavailable", "message": str(exc)}
    )


# Generic exception handler for unhandled errors
@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
