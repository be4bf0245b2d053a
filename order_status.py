"""
Order status values and the time-of-day state machine for web orders.

Web orders move Pending -> Ready for Pickup -> Out for Delivery -> Delivered
as their delivery time approaches. `next_status` is the only place that
decides a transition; the scheduler and the tests both go through it.
"""
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union

CUSTOMER_CUTOFF = timedelta(hours=2)
READY_WINDOW_MINUTES = 120
DISPATCH_WINDOW_MINUTES = 60


class OrderStatus(str, Enum):
    PENDING = "Pending"
    READY_FOR_PICKUP = "Ready for Pickup"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    ONLINE = "ONLINE"
    COD = "COD"


class MobileOrderStatus(str, Enum):
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class MobilePaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PAID_PENDING_VERIFICATION = "paid_pending_verification"
    FAILED = "failed"
    REFUNDED = "refunded"


ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.READY_FOR_PICKUP, OrderStatus.OUT_FOR_DELIVERY)
CLOSED_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def parse_delivery_time(value: str):
    """Parse an "HH:mm" string into (hour, minute); raises ValueError."""
    try:
        hour_str, minute_str = value.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid delivery time {value!r}, expected HH:mm")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid delivery time {value!r}, expected HH:mm")
    return hour, minute


def delivery_datetime(delivery_date: Union[date, datetime], delivery_time: str) -> datetime:
    hour, minute = parse_delivery_time(delivery_time)
    return datetime(delivery_date.year, delivery_date.month, delivery_date.day, hour, minute)


def minutes_to_delivery(delivery_at: datetime, now: datetime) -> int:
    # floor, so 59.5 minutes left counts as 59
    return int((delivery_at - now).total_seconds() // 60)


def next_status(current: Union[OrderStatus, str], minutes_left: int) -> Optional[OrderStatus]:
    """Return the status an order should move to, or None to leave it alone.

    A transition only fires from its exact predecessor, so at most one step
    happens per evaluation and re-evaluating with the same clock is a no-op.
    """
    try:
        current = OrderStatus(current)
    except ValueError:
        return None
    if minutes_left > READY_WINDOW_MINUTES:
        return None
    if minutes_left > DISPATCH_WINDOW_MINUTES:
        if current == OrderStatus.PENDING:
            return OrderStatus.READY_FOR_PICKUP
        return None
    if minutes_left > 0:
        if current == OrderStatus.READY_FOR_PICKUP:
            return OrderStatus.OUT_FOR_DELIVERY
        return None
    if current == OrderStatus.OUT_FOR_DELIVERY:
        return OrderStatus.DELIVERED
    return None


def can_customer_modify(delivery_at: datetime, now: datetime) -> bool:
    """Customers may edit, cancel or delete until two hours before delivery."""
    return now < delivery_at - CUSTOMER_CUTOFF
