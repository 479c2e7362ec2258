"""
Pydantic models for the cart, checkout transactions, receipts and API payloads.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Generic, List, Literal, Optional, Tuple, TypeVar, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
)
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def _as_str(v):
    # Servers send numeric ids and serials as JSON numbers
    if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
        return str(v)
    return v


CoercedStr = Annotated[str, BeforeValidator(_as_str)]


# Cart

class ProductCandidate(BaseModel):
    """A scanned product about to be added to the cart (a cart line without quantity)"""
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Product identifier, unique within a cart")
    name: str = Field(..., description="Display name")
    unit_price: Decimal = Field(..., ge=0, description="Unit price")
    image_ref: str = Field("", description="Image URI")
    sku: str = Field("", description="Product serial / SKU")


class CartLine(ProductCandidate):
    """One scanned product and its quantity inside the cart"""
    quantity: int = Field(..., ge=1, description="Item quantity")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class CartState(BaseModel):
    """Immutable cart snapshot; totals are derived from the lines on every read"""
    model_config = ConfigDict(frozen=True)

    lines: Tuple[CartLine, ...] = ()

    @computed_field
    @property
    def total(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    @computed_field
    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)

    def find(self, code: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.code == code:
                return line
        return None

    @property
    def is_empty(self) -> bool:
        return not self.lines


class AddItem(BaseModel):
    type: Literal["ADD_ITEM"] = "ADD_ITEM"
    candidate: ProductCandidate


class RemoveItem(BaseModel):
    type: Literal["REMOVE_ITEM"] = "REMOVE_ITEM"
    code: str


class IncrementQty(BaseModel):
    type: Literal["INCREMENT_QTY"] = "INCREMENT_QTY"
    code: str


class DecrementQty(BaseModel):
    type: Literal["DECREMENT_QTY"] = "DECREMENT_QTY"
    code: str


class ClearCart(BaseModel):
    type: Literal["CLEAR_CART"] = "CLEAR_CART"


CartAction = Annotated[
    Union[AddItem, RemoveItem, IncrementQty, DecrementQty, ClearCart],
    Field(discriminator="type"),
]


# Transaction service wire models

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionLineItem(_CamelModel):
    product_code: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal

    @field_serializer("unit_price")
    def _serialize_price(self, v: Decimal) -> float:
        return float(v)


class TransactionRequest(_CamelModel):
    """Request body sent to POST /transactions"""
    transaction_ref: str
    customer_ref: str
    line_items: List[TransactionLineItem]


class ServerProductRef(BaseModel):
    name: str


class ServerTransactionItem(BaseModel):
    item: ServerProductRef
    quantity: int
    unit_price: Decimal = Field(validation_alias=AliasChoices("unitPrice", "unit_price"))


class ServerTransaction(BaseModel):
    """Transaction as confirmed by the server"""
    id: CoercedStr = Field(validation_alias=AliasChoices("id", "txd"))
    total_amount: Decimal = Field(validation_alias=AliasChoices("totalAmount", "total_amount"))
    timestamp: datetime
    payment_ref: Optional[str] = Field(
        None, validation_alias=AliasChoices("paymentRef", "payment_reference")
    )
    items: List[ServerTransactionItem] = Field(default_factory=list)


class TransactionEnvelope(BaseModel):
    data: ServerTransaction


class CatalogItem(BaseModel):
    """Item returned by GET /items/{serial}"""
    name: str
    price: Decimal = Field(..., ge=0)
    serial_no: CoercedStr
    image: Optional[str] = None

    def to_candidate(self) -> ProductCandidate:
        return ProductCandidate(
            code=self.serial_no,
            name=self.name,
            unit_price=self.price,
            image_ref=self.image or "",
            sku=self.serial_no,
        )


class CatalogEnvelope(BaseModel):
    data: CatalogItem


# Receipts

class ReceiptLineItem(BaseModel):
    name: str
    quantity: int = Field(..., ge=0)
    unit_price: Decimal


class Receipt(BaseModel):
    """Normalized record of a completed transaction"""
    transaction_id: str = Field(..., description="Transaction identifier (natural key)")
    total_amount: Decimal = Field(..., ge=0)
    item_count: int = Field(..., ge=0)
    occurred_at: datetime = Field(..., description="Business date/time from the server")
    merchant_ref: Optional[str] = None
    payment_ref: Optional[str] = None
    line_items: List[ReceiptLineItem] = Field(default_factory=list)


class SavedReceipt(Receipt):
    """A receipt plus storage metadata"""
    id: str = Field(..., description="Storage-generated key")
    saved_at: datetime = Field(..., description="Wall-clock time of persistence")


class ReceiptUpdate(BaseModel):
    """Partial receipt fields for a shallow update"""
    transaction_id: Optional[str] = None
    total_amount: Optional[Decimal] = Field(None, ge=0)
    item_count: Optional[int] = Field(None, ge=0)
    occurred_at: Optional[datetime] = None
    merchant_ref: Optional[str] = None
    payment_ref: Optional[str] = None
    line_items: Optional[List[ReceiptLineItem]] = None


StorageErrorKind = Literal["not_found", "invalid", "storage"]


class StorageResult(BaseModel, Generic[T]):
    """Uniform result of a receipt store operation"""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_kind: Optional[StorageErrorKind] = None


# HTTP facade

class CartResponse(BaseModel):
    """Response model for cart retrieval"""
    cart_id: str
    lines: List[CartLine] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    total_items: int = 0


class ScanRequest(BaseModel):
    code: str = Field(..., min_length=1, description="Scanned product code")


class ReceiptScanRequest(BaseModel):
    data: str = Field(..., min_length=1, description="Raw scanned QR payload")


class CheckoutRequest(BaseModel):
    """Request model for checkout"""
    customer_ref: Optional[str] = Field(None, description="Customer reference (phone/account)")
    save_receipt: bool = Field(False, description="Persist the receipt after a successful checkout")


class CheckoutResponse(BaseModel):
    """Response model for checkout"""
    receipt: Receipt
    cart_cleared: bool
    saved_receipt: Optional[SavedReceipt] = None
    save_error: Optional[str] = None


class SpendingStats(BaseModel):
    total_spending: Decimal
    receipts_count: int
