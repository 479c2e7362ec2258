"""
Durable receipt store.

The whole receipt collection lives as one JSON array under a single storage key.
Every operation returns a StorageResult instead of raising, so callers decide
whether a failed save is fatal or ignorable.
"""
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from scanpay.config import Config
from scanpay.exceptions import (
    ReceiptNotFoundError,
    ScanPayException,
    StorageError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)
from scanpay.models import Receipt, ReceiptUpdate, SavedReceipt, StorageResult
from scanpay.storage import KeyValueStorage

logger = logging.getLogger(__name__)

_COLLECTION = TypeAdapter(List[SavedReceipt])
_BASE36 = string.digits + string.ascii_lowercase


def generate_receipt_id() -> str:
    """Storage id: receipt_<epoch millis>_<9 random base36 chars>"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"receipt_{int(time.time() * 1000)}_{suffix}"


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def newest_first(receipts: Sequence[SavedReceipt]) -> List[SavedReceipt]:
    """Sort by saved_at descending (the store itself guarantees no order)"""
    return sorted(receipts, key=lambda r: as_utc(r.saved_at), reverse=True)


def _guarded(action: str, default: Any = None) -> Callable:
    """Turn any failure inside a store operation into StorageResult(success=False)"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> StorageResult:
            try:
                return func(*args, **kwargs)
            except ReceiptNotFoundError as e:
                return StorageResult(success=False, error=str(e), error_kind="not_found", data=default)
            except ValidationError as e:
                logger.info(f"Rejected request to {action}: {e}")
                return StorageResult(success=False, error=str(e), error_kind="invalid", data=default)
            except ScanPayException as e:
                logger.warning(f"Failed to {action}: {e}")
                return StorageResult(
                    success=False, error=f"Failed to {action}: {e}", error_kind="storage", data=default
                )
            except Exception as e:
                logger.error(f"Unexpected error trying to {action}: {type(e).__name__}: {e}", exc_info=True)
                return StorageResult(
                    success=False, error=f"Failed to {action}: {e}", error_kind="storage", data=default
                )
        return wrapper
    return decorator


class ReceiptStore:
    """CRUD and aggregation over the saved receipt collection"""

    def __init__(self, storage: KeyValueStorage, storage_key: Optional[str] = None):
        self.storage = storage
        self.storage_key = storage_key or Config.RECEIPTS_STORAGE_KEY

    def _decode(self, raw: Optional[str]) -> List[SavedReceipt]:
        if not raw:
            return []
        try:
            return _COLLECTION.validate_json(raw)
        except (PydanticValidationError, ValueError) as e:
            raise StorageReadError(f"stored receipts are unreadable: {e}") from e

    def _encode(self, receipts: List[SavedReceipt]) -> str:
        try:
            return _COLLECTION.dump_json(receipts).decode("utf-8")
        except (TypeError, ValueError) as e:
            raise StorageWriteError(f"receipts could not be serialized: {e}") from e

    def _load(self) -> List[SavedReceipt]:
        try:
            raw = self.storage.get(self.storage_key)
        except StorageError as e:
            raise StorageReadError(str(e)) from e
        return self._decode(raw)

    def _mutate(self, mutation: Callable[[List[SavedReceipt]], List[SavedReceipt]]) -> None:
        """Load the whole collection, apply ``mutation`` and write it back atomically"""
        def transform(raw: Optional[str]) -> Optional[str]:
            return self._encode(mutation(self._decode(raw)))

        try:
            self.storage.update(self.storage_key, transform)
        except (StorageReadError, StorageWriteError):
            raise
        except StorageError as e:
            raise StorageWriteError(str(e)) from e

    @_guarded("save receipt")
    def save_receipt(self, receipt: Receipt) -> StorageResult[SavedReceipt]:
        """Append a new SavedReceipt; the same transaction may be saved more than once"""
        saved = SavedReceipt(
            **receipt.model_dump(include=set(Receipt.model_fields)),
            id=generate_receipt_id(),
            saved_at=datetime.now(timezone.utc),
        )
        self._mutate(lambda receipts: receipts + [saved])
        logger.info(f"Receipt saved: {saved.id} (transaction {saved.transaction_id})")
        return StorageResult(success=True, data=saved)

    @_guarded("get receipts", default=[])
    def get_all_receipts(self) -> StorageResult[List[SavedReceipt]]:
        return StorageResult(success=True, data=self._load())

    @_guarded("get receipt")
    def get_receipt_by_id(self, receipt_id: str) -> StorageResult[SavedReceipt]:
        for receipt in self._load():
            if receipt.id == receipt_id:
                return StorageResult(success=True, data=receipt)
        raise ReceiptNotFoundError(receipt_id)

    @_guarded("delete receipt")
    def delete_receipt(self, receipt_id: str) -> StorageResult[bool]:
        """Delete by id; deleting an unknown id is a successful no-op"""
        self._mutate(lambda receipts: [r for r in receipts if r.id != receipt_id])
        logger.info(f"Receipt deleted: {receipt_id}")
        return StorageResult(success=True, data=True)

    @_guarded("update receipt")
    def update_receipt(
        self,
        receipt_id: str,
        changes: Union[ReceiptUpdate, Dict[str, Any]],
    ) -> StorageResult[SavedReceipt]:
        """Shallow-merge the given fields into the stored receipt"""
        try:
            if not isinstance(changes, ReceiptUpdate):
                changes = ReceiptUpdate.model_validate(changes)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid receipt fields: {e}") from e
        patch = changes.model_dump(exclude_unset=True)
        updated: Dict[str, SavedReceipt] = {}

        def apply(receipts: List[SavedReceipt]) -> List[SavedReceipt]:
            result = []
            for receipt in receipts:
                if receipt.id == receipt_id:
                    try:
                        receipt = SavedReceipt.model_validate({**receipt.model_dump(), **patch})
                    except PydanticValidationError as e:
                        raise ValidationError(f"invalid receipt fields: {e}") from e
                    updated["receipt"] = receipt
                result.append(receipt)
            if not updated:
                raise ReceiptNotFoundError(receipt_id)
            return result

        self._mutate(apply)
        return StorageResult(success=True, data=updated["receipt"])

    @_guarded("filter receipts", default=[])
    def get_receipts_by_date_range(
        self,
        start: datetime,
        end: datetime,
    ) -> StorageResult[List[SavedReceipt]]:
        """Receipts whose occurred_at lies within [start, end], both inclusive"""
        start, end = as_utc(start), as_utc(end)
        matching = [r for r in self._load() if start <= as_utc(r.occurred_at) <= end]
        return StorageResult(success=True, data=matching)

    @_guarded("calculate total")
    def get_total_spending(self) -> StorageResult[Decimal]:
        total = sum((r.total_amount for r in self._load()), Decimal("0"))
        return StorageResult(success=True, data=total)

    @_guarded("get count", default=0)
    def get_receipts_count(self) -> StorageResult[int]:
        return StorageResult(success=True, data=len(self._load()))

    @_guarded("clear receipts")
    def clear_all_receipts(self) -> StorageResult[bool]:
        try:
            self.storage.delete(self.storage_key)
        except StorageError as e:
            raise StorageWriteError(str(e)) from e
        logger.info("All saved receipts cleared")
        return StorageResult(success=True, data=True)
