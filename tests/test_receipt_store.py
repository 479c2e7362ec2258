"""
Tests for the durable receipt store.
"""
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from scanpay.exceptions import RedisConnectionError
from scanpay.models import Receipt, ReceiptUpdate
from scanpay.receipt_store import ReceiptStore, generate_receipt_id, newest_first
from scanpay.storage import RedisStorage
from tests.conftest import make_receipt


class TestSaveAndGet:
    def test_round_trip(self, receipt_store):
        receipt = make_receipt()

        saved = receipt_store.save_receipt(receipt)
        fetched = receipt_store.get_receipt_by_id(saved.data.id)

        assert saved.success
        assert fetched.success
        assert fetched.data == saved.data
        assert Receipt(**fetched.data.model_dump(include=set(Receipt.model_fields))) == receipt
        assert fetched.data.saved_at.tzinfo is not None

    def test_generated_id_format(self):
        assert re.fullmatch(r"receipt_\d{13}_[0-9a-z]{9}", generate_receipt_id())

    def test_same_transaction_saved_twice_creates_two_records(self, receipt_store):
        receipt = make_receipt()

        first = receipt_store.save_receipt(receipt).data
        second = receipt_store.save_receipt(receipt).data

        assert first.id != second.id
        assert first.transaction_id == second.transaction_id
        assert receipt_store.get_receipts_count().data == 2

    def test_resaving_a_saved_receipt_gets_new_metadata(self, receipt_store):
        saved = receipt_store.save_receipt(make_receipt()).data

        again = receipt_store.save_receipt(saved)

        assert again.success
        assert again.data.id != saved.id

    def test_item_count_is_not_validated_against_lines(self, receipt_store):
        receipt = make_receipt(item_count=7)

        saved = receipt_store.save_receipt(receipt)

        assert saved.success
        assert saved.data.item_count == 7

    def test_get_unknown_id_is_not_found(self, receipt_store):
        result = receipt_store.get_receipt_by_id("receipt_missing")

        assert not result.success
        assert result.error == "Receipt not found"

    def test_empty_store_reads_as_empty(self, receipt_store):
        result = receipt_store.get_all_receipts()

        assert result.success
        assert result.data == []

    def test_reads_are_idempotent(self, receipt_store):
        receipt_store.save_receipt(make_receipt("TXD1"))
        receipt_store.save_receipt(make_receipt("TXD2"))

        assert receipt_store.get_all_receipts().data == receipt_store.get_all_receipts().data

    def test_collection_is_stored_as_one_json_array(self, receipt_store, memory_storage):
        receipt_store.save_receipt(make_receipt("TXD1"))
        receipt_store.save_receipt(make_receipt("TXD2"))

        raw = memory_storage.get("test_receipts")

        assert raw.startswith("[") and raw.endswith("]")
        assert '"transaction_id":"TXD1"' in raw


class TestDeleteAndClear:
    def test_delete_then_get_is_not_found(self, receipt_store):
        saved = receipt_store.save_receipt(make_receipt()).data

        deleted = receipt_store.delete_receipt(saved.id)

        assert deleted.success and deleted.data is True
        assert receipt_store.get_receipt_by_id(saved.id).error == "Receipt not found"

    def test_delete_unknown_id_is_successful_noop(self, receipt_store):
        receipt_store.save_receipt(make_receipt())

        result = receipt_store.delete_receipt("receipt_never_saved")

        assert result.success
        assert receipt_store.get_receipts_count().data == 1

    def test_delete_only_removes_matching_record(self, receipt_store):
        keep = receipt_store.save_receipt(make_receipt("TXD1")).data
        drop = receipt_store.save_receipt(make_receipt("TXD2")).data

        receipt_store.delete_receipt(drop.id)

        assert [r.id for r in receipt_store.get_all_receipts().data] == [keep.id]

    def test_clear_all(self, receipt_store, memory_storage):
        receipt_store.save_receipt(make_receipt("TXD1"))
        receipt_store.save_receipt(make_receipt("TXD2"))

        assert receipt_store.clear_all_receipts().success
        assert memory_storage.get("test_receipts") is None
        assert receipt_store.get_receipts_count().data == 0


class TestUpdate:
    def test_shallow_merge(self, receipt_store):
        saved = receipt_store.save_receipt(make_receipt()).data

        result = receipt_store.update_receipt(saved.id, {"merchant_ref": "Corner Shop", "total_amount": "1999.50"})

        assert result.success
        assert result.data.merchant_ref == "Corner Shop"
        assert result.data.total_amount == Decimal("1999.50")
        assert result.data.payment_ref == saved.payment_ref
        assert result.data.id == saved.id
        assert result.data.saved_at == saved.saved_at
        assert receipt_store.get_receipt_by_id(saved.id).data == result.data

    def test_line_items_are_replaced_not_merged(self, receipt_store):
        saved = receipt_store.save_receipt(make_receipt()).data

        result = receipt_store.update_receipt(
            saved.id,
            ReceiptUpdate(line_items=[{"name": "Only item", "quantity": 1, "unit_price": "5"}]),
        )

        assert [li.name for li in result.data.line_items] == ["Only item"]

    def test_update_unknown_id_is_not_found(self, receipt_store):
        receipt_store.save_receipt(make_receipt())

        result = receipt_store.update_receipt("receipt_missing", {"merchant_ref": "x"})

        assert not result.success
        assert result.error == "Receipt not found"
        assert result.error_kind == "not_found"

    def test_invalid_fields_are_rejected(self, receipt_store):
        saved = receipt_store.save_receipt(make_receipt()).data

        result = receipt_store.update_receipt(saved.id, {"total_amount": "-1"})

        assert not result.success
        assert "invalid receipt fields" in result.error
        assert result.error_kind == "invalid"
        assert receipt_store.get_receipt_by_id(saved.id).data.total_amount == Decimal("2000")


class TestQueries:
    def test_date_range_is_inclusive(self, receipt_store):
        base = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        for day in range(5):
            receipt_store.save_receipt(make_receipt(f"TXD{day}", occurred_at=base + timedelta(days=day)))

        result = receipt_store.get_receipts_by_date_range(base + timedelta(days=1), base + timedelta(days=3))

        assert result.success
        assert sorted(r.transaction_id for r in result.data) == ["TXD1", "TXD2", "TXD3"]

    def test_date_range_treats_naive_bounds_as_utc(self, receipt_store):
        receipt_store.save_receipt(make_receipt("TXD1", occurred_at=datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)))

        result = receipt_store.get_receipts_by_date_range(datetime(2025, 6, 1), datetime(2025, 6, 1, 23, 59))

        assert [r.transaction_id for r in result.data] == ["TXD1"]

    def test_inverted_range_is_empty(self, receipt_store):
        receipt_store.save_receipt(make_receipt())

        result = receipt_store.get_receipts_by_date_range(datetime(2026, 1, 1), datetime(2025, 1, 1))

        assert result.success
        assert result.data == []

    def test_total_spending_equals_sum_of_stored_totals(self, receipt_store):
        for ref, total in (("TXD1", "1000"), ("TXD2", "250.75"), ("TXD3", "0")):
            receipt_store.save_receipt(make_receipt(ref, total=total))

        spending = receipt_store.get_total_spending()
        everything = receipt_store.get_all_receipts().data

        assert spending.data == Decimal("1250.75")
        assert spending.data == sum(r.total_amount for r in everything)

    def test_total_spending_of_empty_store_is_zero(self, receipt_store):
        assert receipt_store.get_total_spending().data == Decimal("0")

    def test_newest_first(self, receipt_store):
        ids = [receipt_store.save_receipt(make_receipt(f"TXD{i}")).data.id for i in range(3)]
        receipts = receipt_store.get_all_receipts().data
        shuffled = [receipts[1], receipts[2], receipts[0]]

        ordered = newest_first(shuffled)

        assert [r.saved_at for r in ordered] == sorted((r.saved_at for r in receipts), reverse=True)
        assert set(r.id for r in ordered) == set(ids)


class TestFailures:
    def test_corrupt_collection_is_reported_not_raised(self, receipt_store, memory_storage):
        memory_storage.set("test_receipts", "{not json")

        all_result = receipt_store.get_all_receipts()
        count_result = receipt_store.get_receipts_count()
        save_result = receipt_store.save_receipt(make_receipt())

        assert not all_result.success and all_result.data == []
        assert not count_result.success and count_result.data == 0
        assert not save_result.success
        assert save_result.error.startswith("Failed to save receipt")
        assert save_result.error_kind == "storage"
        assert memory_storage.get("test_receipts") == "{not json"

    def test_storage_outage_is_reported_not_raised(self):
        redis_client = MagicMock()
        redis_client.get.side_effect = RedisConnectionError("Redis operation failed after 3 retries")
        redis_client.watch_update.side_effect = RedisConnectionError("Redis operation failed after 3 retries")
        redis_client.delete.side_effect = RedisConnectionError("Redis operation failed after 3 retries")
        store = ReceiptStore(RedisStorage(redis_client))

        assert not store.get_all_receipts().success
        assert not store.save_receipt(make_receipt()).success
        assert not store.delete_receipt("x").success
        assert not store.clear_all_receipts().success
        assert "Redis operation failed" in store.get_total_spending().error


def test_null_for_required_field_is_invalid_not_storage_failure(receipt_store):
    saved = receipt_store.save_receipt(make_receipt()).data

    result = receipt_store.update_receipt(saved.id, {"transaction_id": None})

    assert not result.success
    assert result.error_kind == "invalid"
    assert receipt_store.get_receipt_by_id(saved.id).data.transaction_id == "TXD1750486067355"
