"""
Request logging for the ScanPay API.

Cart ids are hashed before they reach the logs. Checkout handlers put the
transaction ref they submitted on ``request.state`` so every checkout response,
successful or not, is logged with the ref the server saw.
"""
import time
import hashlib
import logging
from typing import Any, Callable, Dict, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CART_ID_HEADER = "X-Cart-ID"
LATENCY_HEADER = "X-Response-Time-Ms"


def hash_identifier(identifier: Optional[str]) -> Optional[str]:
    """sha256 prefix, so carts can be correlated without logging the raw id"""
    if not identifier:
        return None
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


def _context(request: Request) -> Dict[str, Any]:
    context = {
        "method": request.method,
        "path": request.url.path,
        "hashed_cart_id": hash_identifier(request.headers.get(CART_ID_HEADER)),
    }
    transaction_ref = getattr(request.state, "transaction_ref", None)
    if transaction_ref:
        context["transaction_ref"] = transaction_ref
    return context


class MetricsMiddleware(BaseHTTPMiddleware):
    """Logs each request with its latency and sets the X-Response-Time-Ms header"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        logger.debug(f"Request: {request.method} {request.url.path}", extra=_context(request))

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Unhandled error on {request.method} {request.url.path}: {type(e).__name__}",
                extra=_context(request),
                exc_info=True,
            )
            raise

        latency_ms = (time.time() - start_time) * 1000
        context = _context(request)
        context.update(status_code=response.status_code, latency_ms=round(latency_ms, 2))
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        message = f"Response: {request.method} {request.url.path} {response.status_code}"
        if "transaction_ref" in context:
            message += f" [{context['transaction_ref']}]"
        logger.log(level, message, extra=context)

        response.headers[LATENCY_HEADER] = f"{latency_ms:.2f}"
        return response
