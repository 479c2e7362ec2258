"""
Pytest fixtures for scanpay tests.

Uses responses to mock the transaction service and fakeredis for Redis.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import fakeredis
import pytest

from scanpay.cart_service import CartSession
from scanpay.checkout_service import CheckoutService
from scanpay.models import ProductCandidate, Receipt, ReceiptLineItem
from scanpay.receipt_store import ReceiptStore
from scanpay.redis_client import RedisClient
from scanpay.storage import MemoryStorage, RedisStorage
from scanpay.transaction_client import TransactionClient

BASE_URL = "http://txn.test"
TRANSACTIONS_URL = f"{BASE_URL}/api/v1/transactions"
ITEMS_URL = f"{BASE_URL}/api/v1/items"


def make_candidate(code: str, price: str, name: Optional[str] = None) -> ProductCandidate:
    return ProductCandidate(
        code=code,
        name=name or f"Product {code}",
        unit_price=Decimal(price),
        image_ref=f"https://img.test/{code}.png",
        sku=f"SKU-{code}",
    )


def make_receipt(
    transaction_id: str = "TXD1750486067355",
    total: str = "2000",
    occurred_at: Optional[datetime] = None,
    **overrides: Any,
) -> Receipt:
    fields: Dict[str, Any] = dict(
        transaction_id=transaction_id,
        total_amount=Decimal(total),
        item_count=2,
        occurred_at=occurred_at or datetime(2025, 6, 21, 6, 7, 47, tzinfo=timezone.utc),
        merchant_ref="Fresco Supermarket",
        payment_ref="MM-778899",
        line_items=[
            ReceiptLineItem(name="Product A", quantity=1, unit_price=Decimal("1000")),
            ReceiptLineItem(name="Product B", quantity=2, unit_price=Decimal("500")),
        ],
    )
    fields.update(overrides)
    return Receipt(**fields)


def transaction_payload(
    transaction_id: str = "TXD1750486067355",
    total: str = "2000.00",
    items: Optional[List[Dict[str, Any]]] = None,
    payment_ref: Optional[str] = "MM-778899",
) -> Dict[str, Any]:
    """Transaction service response body"""
    if items is None:
        items = [
            {"item": {"name": "Product A"}, "quantity": 1, "unitPrice": "1000.00"},
            {"item": {"name": "Product B"}, "quantity": 2, "unitPrice": "500.00"},
        ]
    data: Dict[str, Any] = {
        "id": transaction_id,
        "totalAmount": total,
        "timestamp": "2025-06-21T06:07:47.355Z",
        "items": items,
    }
    if payment_ref is not None:
        data["paymentRef"] = payment_ref
    return {"data": data}


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def receipt_store(memory_storage: MemoryStorage) -> ReceiptStore:
    return ReceiptStore(memory_storage, storage_key="test_receipts")


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_server: fakeredis.FakeServer) -> RedisClient:
    return RedisClient(client=fakeredis.FakeRedis(server=fake_server, decode_responses=True))


@pytest.fixture
def redis_storage(redis_client: RedisClient) -> RedisStorage:
    return RedisStorage(redis_client)


@pytest.fixture
def transaction_client() -> TransactionClient:
    return TransactionClient(base_url=BASE_URL, timeout=1, max_retries=2, retry_wait=0)


@pytest.fixture
def checkout_service(transaction_client: TransactionClient) -> CheckoutService:
    return CheckoutService(client=transaction_client, merchant_ref="Fresco Supermarket")


@pytest.fixture
def ab_cart() -> CartSession:
    """A at 1000 x1, B at 500 x2 -> total 2000"""
    session = CartSession()
    session.add_item(make_candidate("A", "1000"))
    session.add_item(make_candidate("B", "500"))
    session.add_item(make_candidate("B", "500"))
    return session
