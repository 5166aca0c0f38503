"""
Order status state machine

Order status and payment status are two independent machines, each driven
by an explicit transition table. Every accepted change appends exactly one
timeline entry; rejected changes leave the order untouched.

    pending ──confirm──▶ confirmed ──process──▶ processing
       │                    │  └──────ship──────┐    │
       │                    │                   ▼    ▼
       │                    │                  shipped ──deliver──▶ delivered
       └──cancel──▶ cancelled ◀──cancel── (any non-terminal)
"""
import enum
import logging
from decimal import Decimal
from typing import Dict, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import InvalidTransitionError
from storefront.core.utils import to_money, utcnow
from storefront.models.order import Order, OrderTimelineEntry
from storefront.services.stock_service import StockService, stock_service

logger = logging.getLogger(__name__)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderEvent(str, enum.Enum):
    CONFIRM = "confirm"
    PROCESS = "process"
    SHIP = "ship"
    DELIVER = "deliver"
    CANCEL = "cancel"


TRANSITIONS: Dict[Tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PENDING, OrderEvent.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.PENDING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.CONFIRMED, OrderEvent.PROCESS): OrderStatus.PROCESSING,
    (OrderStatus.CONFIRMED, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.CONFIRMED, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PROCESSING, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.DELIVERED,
    (OrderStatus.SHIPPED, OrderEvent.CANCEL): OrderStatus.CANCELLED,
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

PAYMENT_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.PENDING},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

# Admin "set status to X" requests map onto the event that reaches X
_EVENT_FOR_STATUS = {
    OrderStatus.CONFIRMED: OrderEvent.CONFIRM,
    OrderStatus.PROCESSING: OrderEvent.PROCESS,
    OrderStatus.SHIPPED: OrderEvent.SHIP,
    OrderStatus.DELIVERED: OrderEvent.DELIVER,
    OrderStatus.CANCELLED: OrderEvent.CANCEL,
}


def next_status(current: OrderStatus, event: OrderEvent) -> OrderStatus:
    """Look up the target state, or raise InvalidTransitionError."""
    current = OrderStatus(current)
    event = OrderEvent(event)
    target = TRANSITIONS.get((current, event))
    if target is None:
        if current in TERMINAL_STATUSES:
            message = f"Order is {current.value}; no further status changes are allowed"
        else:
            message = f"Cannot {event.value} an order that is {current.value}"
        raise InvalidTransitionError(current.value, event.value, message=message)
    return target


def status_event_for(target: OrderStatus) -> OrderEvent:
    target = OrderStatus(target)
    event = _EVENT_FOR_STATUS.get(target)
    if event is None:
        raise InvalidTransitionError("*", target.value, message=f"Orders cannot be moved back to {target.value}")
    return event


def can_transition(current: OrderStatus, event: OrderEvent) -> bool:
    return (OrderStatus(current), OrderEvent(event)) in TRANSITIONS


def check_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    current = PaymentStatus(current)
    target = PaymentStatus(target)
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidTransitionError(
            current.value,
            target.value,
            message=f"Cannot change payment status from '{current.value}' to '{target.value}'",
        )


def append_timeline(order: Order, note: Optional[str], actor_id: Optional[int] = None) -> OrderTimelineEntry:
    entry = OrderTimelineEntry(
        status=order.status,
        payment_status=order.payment_status,
        note=note,
        actor_id=actor_id,
        created_at=utcnow(),
    )
    order.timeline.append(entry)
    return entry


def transition(
    order: Order,
    event: OrderEvent,
    actor_id: Optional[int] = None,
    note: Optional[str] = None,
) -> OrderStatus:
    """Apply `event` to the order and record it on the timeline."""
    target = next_status(order.status, event)
    previous = order.status
    order.status = target.value
    if target == OrderStatus.CANCELLED:
        order.cancelled_at = utcnow()
    append_timeline(order, note or f"Status changed to {target.value}", actor_id)
    logger.info("Order %s: %s -> %s", order.order_number, previous, target.value)
    return target


def set_payment_status(
    order: Order,
    target: PaymentStatus,
    actor_id: Optional[int] = None,
    note: Optional[str] = None,
    record: bool = True,
) -> PaymentStatus:
    """
    Move the payment machine. With `record=False` the caller is responsible
    for the timeline entry (used when one action changes both machines).
    """
    target = PaymentStatus(target)
    check_payment_transition(order.payment_status, target)
    order.payment_status = target.value
    if target == PaymentStatus.PAID:
        order.paid_at = utcnow()
    if record:
        append_timeline(order, note or f"Payment status changed to {target.value}", actor_id)
    return target


async def cancel_order(
    db: AsyncSession,
    order: Order,
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
    refund_amount: Optional[Decimal] = None,
    stock: StockService = stock_service,
) -> Order:
    """
    Cancel an order, return its stock and optionally record a refund.

    Both transitions are checked before anything changes, so a rejected
    cancellation neither releases stock nor touches the timeline.
    """
    target = next_status(order.status, OrderEvent.CANCEL)
    if refund_amount is not None:
        check_payment_transition(order.payment_status, PaymentStatus.REFUNDED)
        if to_money(refund_amount) > to_money(order.total):
            raise InvalidTransitionError(
                order.payment_status,
                PaymentStatus.REFUNDED.value,
                message="Refund amount cannot exceed the order total",
            )

    for item in order.items:
        await stock.release(db, item.product_id, item.variant_sku, item.quantity)

    order.status = target.value
    order.cancelled_at = utcnow()
    note = f"Order cancelled: {reason}" if reason else "Order cancelled"

    if refund_amount is not None:
        set_payment_status(order, PaymentStatus.REFUNDED, actor_id, record=False)
        order.refund_amount = to_money(refund_amount)
        order.refund_reason = reason
        order.refunded_at = utcnow()
        order.refunded_by = actor_id
        note = f"{note}; refunded {to_money(refund_amount)}"

    append_timeline(order, note, actor_id)
    logger.info(
        "Order %s cancelled by %s (refund=%s)",
        order.order_number, actor_id, refund_amount,
    )
    return order
