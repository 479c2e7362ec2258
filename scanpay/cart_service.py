"""
Cart state machine: a pure transition function over immutable cart snapshots.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from scanpay.config import Config
from scanpay.models import (
    AddItem,
    CartAction,
    CartLine,
    CartState,
    ClearCart,
    DecrementQty,
    IncrementQty,
    ProductCandidate,
    RemoveItem,
)

logger = logging.getLogger(__name__)

EMPTY_CART = CartState()


def _with_quantity(line: CartLine, quantity: int) -> CartLine:
    return line.model_copy(update={"quantity": quantity})


def _add_item(lines: Tuple[CartLine, ...], candidate: ProductCandidate) -> Tuple[CartLine, ...]:
    for index, line in enumerate(lines):
        if line.code == candidate.code:
            return lines[:index] + (_with_quantity(line, line.quantity + 1),) + lines[index + 1:]
    fields = candidate.model_dump(include=set(ProductCandidate.model_fields))
    return lines + (CartLine(**fields, quantity=1),)


def _increment(lines: Tuple[CartLine, ...], code: str) -> Tuple[CartLine, ...]:
    return tuple(
        _with_quantity(line, line.quantity + 1) if line.code == code else line
        for line in lines
    )


def _decrement(lines: Tuple[CartLine, ...], code: str) -> Tuple[CartLine, ...]:
    result = []
    for line in lines:
        if line.code != code:
            result.append(line)
        elif line.quantity > 1:
            result.append(_with_quantity(line, line.quantity - 1))
        # quantity 1 -> the line is dropped, never kept at 0
    return tuple(result)


def reduce_cart(state: CartState, action: CartAction) -> CartState:
    """
    Apply one cart action and return the new cart state.

    Every transition is total: unknown codes are ignored rather than rejected.
    The input state is never modified.
    """
    if isinstance(action, AddItem):
        lines = _add_item(state.lines, action.candidate)
    elif isinstance(action, RemoveItem):
        lines = tuple(line for line in state.lines if line.code != action.code)
    elif isinstance(action, IncrementQty):
        lines = _increment(state.lines, action.code)
    elif isinstance(action, DecrementQty):
        lines = _decrement(state.lines, action.code)
    elif isinstance(action, ClearCart):
        return EMPTY_CART
    else:
        raise TypeError(f"Unknown cart action: {action!r}")

    if lines == state.lines:
        return state
    return CartState(lines=lines)


class CartSession:
    """Owns the cart of a single app session; all mutations go through reduce_cart"""

    def __init__(self, state: Optional[CartState] = None):
        self._state = state if state is not None else EMPTY_CART
        self._lock = threading.Lock()

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def total_items(self) -> int:
        return self._state.total_items

    def dispatch(self, action: CartAction) -> CartState:
        with self._lock:
            state = self._state = reduce_cart(self._state, action)
        logger.debug(
            f"Cart action {action.type}",
            extra={"lines": len(state.lines), "total": str(state.total)},
        )
        return state

    def add_item(self, candidate: ProductCandidate) -> CartState:
        return self.dispatch(AddItem(candidate=candidate))

    def remove_item(self, code: str) -> CartState:
        return self.dispatch(RemoveItem(code=code))

    def increment(self, code: str) -> CartState:
        return self.dispatch(IncrementQty(code=code))

    def decrement(self, code: str) -> CartState:
        return self.dispatch(DecrementQty(code=code))

    def clear(self) -> CartState:
        return self.dispatch(ClearCart())


class CartRegistry:
    """
    One CartSession per cart id, kept in process memory.

    Sessions are only created by mutations, dropped once the cart is cleared or
    checked out, and expire after ``ttl_seconds`` without any access.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else Config.CART_TTL_SECONDS
        self._clock = clock
        self._sessions: Dict[str, CartSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _evict_expired(self, now: float) -> None:
        expired = [cart_id for cart_id, seen in self._last_seen.items() if now - seen > self.ttl_seconds]
        for cart_id in expired:
            del self._sessions[cart_id]
            del self._last_seen[cart_id]
        if expired:
            logger.info(f"Expired {len(expired)} idle cart(s)")

    def get(self, cart_id: str) -> CartSession:
        """Session for ``cart_id``, created on first use"""
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            session = self._sessions.get(cart_id)
            if session is None:
                session = self._sessions[cart_id] = CartSession()
            self._last_seen[cart_id] = now
            return session

    def snapshot(self, cart_id: str) -> CartState:
        """Current state without creating a session; unknown ids read as empty"""
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            session = self._sessions.get(cart_id)
            if session is None:
                return EMPTY_CART
            self._last_seen[cart_id] = now
            return session.state

    def discard(self, cart_id: str) -> None:
        with self._lock:
            self._sessions.pop(cart_id, None)
            self._last_seen.pop(cart_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
