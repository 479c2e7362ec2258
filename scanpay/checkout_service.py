"""
Checkout service: turns a cart snapshot into a submitted transaction and a receipt.
"""
import logging
import threading
import time
from typing import Callable, Optional
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from scanpay.config import Config
from scanpay.exceptions import CheckoutFailed, ServiceError, ValidationError
from scanpay.models import (
    CartState,
    Receipt,
    ReceiptLineItem,
    ServerTransaction,
    TransactionLineItem,
    TransactionRequest,
)
from scanpay.transaction_client import TransactionClient

logger = logging.getLogger(__name__)


class TransactionRefGenerator:
    """
    Timestamp-based transaction refs (TXD<epoch millis>).

    Refs are strictly increasing within a process, so two submissions in the
    same millisecond still get distinct refs.
    """

    def __init__(self, prefix: str = Config.TRANSACTION_REF_PREFIX, clock: Callable[[], float] = time.time):
        self.prefix = prefix
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            millis = max(int(self._clock() * 1000), self._last + 1)
            self._last = millis
        return f"{self.prefix}{millis}"


def build_transaction_request(cart: CartState, customer_ref: str, transaction_ref: str) -> TransactionRequest:
    return TransactionRequest(
        transaction_ref=transaction_ref,
        customer_ref=customer_ref,
        line_items=[
            TransactionLineItem(
                product_code=line.code,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in cart.lines
        ],
    )


def receipt_from_transaction(transaction: ServerTransaction, merchant_ref: Optional[str] = None) -> Receipt:
    """Map the server's confirmed transaction into a Receipt; the server is authoritative"""
    return Receipt(
        transaction_id=transaction.id,
        total_amount=transaction.total_amount,
        item_count=len(transaction.items),
        occurred_at=transaction.timestamp,
        merchant_ref=merchant_ref,
        payment_ref=transaction.payment_ref,
        line_items=[
            ReceiptLineItem(
                name=item.item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in transaction.items
        ],
    )


def parse_receipt_reference(scanned: str, base_url: Optional[str] = None) -> Optional[str]:
    """
    Extract a transaction id from a scanned receipt QR code.

    Only URLs on the transaction service's host whose path points into
    /api/<version>/transactions and ends in a TXD-prefixed id are accepted.
    Anything else (plain product codes included) yields None.
    """
    try:
        url = urlparse(scanned.strip())
        expected_host = urlparse(base_url or Config.API_SERVER_BASE_URL).hostname
    except ValueError:
        return None

    if not url.scheme or not url.hostname or url.hostname != expected_host:
        return None
    if f"/api/{Config.API_VERSION}/transactions" not in url.path:
        return None

    transaction_id = url.path.rstrip("/").split("/")[-1]
    if transaction_id.startswith(Config.TRANSACTION_REF_PREFIX):
        return transaction_id
    return None


class CheckoutService:
    """Service for checkout operations"""

    def __init__(
        self,
        client: Optional[TransactionClient] = None,
        merchant_ref: Optional[str] = None,
        ref_generator: Optional[Callable[[], str]] = None,
    ):
        self.client = client or TransactionClient()
        self.merchant_ref = merchant_ref if merchant_ref is not None else Config.MERCHANT_NAME
        self.next_ref = ref_generator or TransactionRefGenerator()

    def checkout(self, cart: CartState, customer_ref: str) -> Receipt:
        """
        Submit the cart as a transaction and return the server-confirmed receipt.

        The cart is neither cleared nor persisted here; both are left to the caller.

        Raises:
            ValidationError: if the cart is empty (no request is sent)
            CheckoutFailed: on transport errors, timeouts, non-2xx responses or
                responses that cannot be mapped to a receipt
        """
        if cart.is_empty:
            raise ValidationError("Cannot checkout empty cart")

        transaction_ref = self.next_ref()
        request = build_transaction_request(cart, customer_ref, transaction_ref)

        try:
            transaction = self.client.create_transaction(request)
            receipt = receipt_from_transaction(transaction, self.merchant_ref)
        except ServiceError as e:
            logger.warning(f"Checkout {transaction_ref} failed: {e}")
            raise CheckoutFailed(transaction_ref, str(e)) from e
        except PydanticValidationError as e:
            logger.warning(f"Checkout {transaction_ref} returned an unusable transaction: {e}")
            raise CheckoutFailed(transaction_ref, "invalid transaction in response") from e

        logger.info(
            f"Checkout {transaction_ref} confirmed as {receipt.transaction_id}, total {receipt.total_amount}",
            extra={"transaction_ref": transaction_ref, "item_count": receipt.item_count},
        )
        return receipt

    def lookup_receipt(self, transaction_id: str) -> Optional[Receipt]:
        """Fetch a past transaction (e.g. from a scanned receipt); None if the server doesn't know it"""
        try:
            transaction = self.client.get_transaction(transaction_id)
        except ServiceError as e:
            if e.status_code == 404:
                return None
            raise
        try:
            return receipt_from_transaction(transaction, self.merchant_ref)
        except PydanticValidationError as e:
            raise ServiceError(f"transaction {transaction_id} cannot be mapped to a receipt: {e}") from e
