"""
Custom exceptions for the cart, checkout and receipt storage pipeline.
"""
from typing import Optional


class ScanPayException(Exception):
    """Base exception for pipeline operations"""
    pass


class ValidationError(ScanPayException):
    """Raised when validation fails (e.g. checkout of an empty cart)"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ServiceError(ScanPayException):
    """Raised when the remote service answers with a non-2xx status or an unusable body"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NetworkFailure(ServiceError):
    """Raised on transport errors and timeouts talking to the remote service"""
    pass


class CheckoutFailed(ScanPayException):
    """Raised when a checkout could not be completed for any reason"""
    def __init__(self, transaction_ref: str, reason: str):
        self.transaction_ref = transaction_ref
        self.reason = reason
        super().__init__(f"Checkout {transaction_ref} failed: {reason}")


class StorageError(ScanPayException):
    """Base exception for the receipt persistence layer"""
    pass


class StorageReadError(StorageError):
    """Raised when the stored collection cannot be read or decoded"""
    pass


class StorageWriteError(StorageError):
    """Raised when the collection cannot be encoded or written back"""
    pass


class RedisConnectionError(StorageError):
    """Raised when Redis connection fails"""
    pass


class ReceiptNotFoundError(ScanPayException):
    """Raised when a saved receipt does not exist"""
    message = "Receipt not found"

    def __init__(self, receipt_id: str):
        self.receipt_id = receipt_id
        super().__init__(self.message)


class ProductNotFoundError(ScanPayException):
    """Raised when the item catalog has no product for a scanned code"""
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Product not found: {code}")
