"""Order state machine and its persistence.

Status flow::

    pending -> processing -> {paid, cancelled, completed}
    pending -> {expired, cancelled, paid, completed}

``expired``, ``cancelled``, ``completed`` and ``paid`` are terminal. Every
transition is a single conditional UPDATE keyed on the current status, so
concurrent or repeated requests for the same order apply it at most once and a
request against a terminal order is a successful no-op.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import geo, referrals
from .config import Settings
from .errors import AlreadyInitiated, InternalError, InvalidState, NotFound, ValidationError
from .models import Customer, Order, OrderDelivery, OrderItem, Outlet, utcnow
from .pricing import ItemRequest, price_order

logger = logging.getLogger("outlet-orders.ledger")

PENDING = "pending"
PROCESSING = "processing"
PAID = "paid"
CANCELLED = "cancelled"
COMPLETED = "completed"
EXPIRED = "expired"

TERMINAL_STATES = frozenset({EXPIRED, CANCELLED, COMPLETED, PAID})
SUCCESS_STATES = frozenset({PAID, COMPLETED})

ALLOWED_SOURCES = {
    PROCESSING: frozenset({PENDING}),
    PAID: frozenset({PENDING, PROCESSING}),
    CANCELLED: frozenset({PENDING, PROCESSING}),
    COMPLETED: frozenset({PENDING, PROCESSING}),
    EXPIRED: frozenset({PENDING}),
}


@dataclass(frozen=True)
class DeliveryRequest:
    latitude: float
    longitude: float
    address: str
    notes: Optional[str] = None


def get_order(db_sess: Session, order_id: int) -> Order:
    order = db_sess.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", code="ORDER_NOT_FOUND")
    return order


def find_by_payment_reference(db_sess: Session, reference: str) -> Optional[Order]:
    return db_sess.execute(
        select(Order).where(Order.payment_reference == reference)
    ).scalar_one_or_none()


def _build_delivery(
    db_sess: Session, settings: Settings, outlet_id: int, delivery: DeliveryRequest
) -> OrderDelivery:
    if not (delivery.address or "").strip():
        raise ValidationError("Delivery address is required")
    geo.validate_coordinates(delivery.latitude, delivery.longitude)

    site = geo.load_site(db_sess, outlet_id, settings)
    if site is None:
        raise ValidationError(
            f"Outlet {outlet_id} has no active location for delivery", code="NO_DELIVERY_LOCATION"
        )
    distance = geo.haversine_km(
        site.latitude, site.longitude, delivery.latitude, delivery.longitude
    )
    if distance > site.radius_km:
        raise ValidationError(
            f"Destination is {geo.round_distance(distance)} km away, outlet delivers within "
            f"{site.radius_km} km",
            code="OUT_OF_DELIVERY_RANGE",
        )
    distance_km = geo.round_distance(distance)
    return OrderDelivery(
        latitude=delivery.latitude,
        longitude=delivery.longitude,
        address=delivery.address.strip(),
        notes=delivery.notes,
        distance_km=distance_km,
        delivery_fee=geo.calculate_delivery_fee(
            distance_km, site.free_delivery_km, site.fee_per_km
        ),
    )


def create_order(
    db_sess: Session,
    settings: Settings,
    outlet_id: int,
    customer_id: int,
    items: Sequence[ItemRequest],
    delivery: Optional[DeliveryRequest] = None,
) -> Order:
    """Price and persist a new ``pending`` order with its items and delivery.

    The order, its items and its delivery record are committed together; any
    validation or pricing failure leaves nothing behind.
    """
    outlet = db_sess.get(Outlet, outlet_id)
    if outlet is None or not outlet.active:
        raise NotFound(f"Outlet {outlet_id} not found or inactive", code="OUTLET_NOT_FOUND")
    if db_sess.get(Customer, customer_id) is None:
        raise NotFound(f"Customer {customer_id} not found", code="CUSTOMER_NOT_FOUND")

    priced = price_order(db_sess, outlet_id, items)
    delivery_record = (
        _build_delivery(db_sess, settings, outlet_id, delivery) if delivery is not None else None
    )
    delivery_fee = delivery_record.delivery_fee if delivery_record is not None else 0

    now = utcnow()
    order = Order(
        outlet_id=outlet_id,
        customer_id=customer_id,
        status=PENDING,
        items_total=priced.items_total,
        delivery_fee=delivery_fee,
        total=priced.items_total + delivery_fee,
        referral_rewarded=False,
        created_at=now,
        updated_at=now,
    )
    for line in priced.lines:
        order.items.append(
            OrderItem(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                subtotal=line.subtotal,
            )
        )
    order.delivery = delivery_record

    try:
        db_sess.add(order)
        db_sess.commit()
    except SQLAlchemyError as exc:
        db_sess.rollback()
        logger.exception(f"Failed to persist order for customer {customer_id}")
        raise InternalError("Failed to create order") from exc

    db_sess.refresh(order)
    logger.info(f"Order {order.order_id} created pending payment, total {order.total}")
    return order


def attach_payment_reference(
    db_sess: Session, order_id: int, reference: str, payment_url: Optional[str] = None
) -> None:
    try:
        updated = db_sess.execute(
            update(Order)
            .where(Order.order_id == order_id, Order.payment_reference.is_(None))
            .values(payment_reference=reference, payment_url=payment_url, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        db_sess.commit()
    except SQLAlchemyError as exc:
        db_sess.rollback()
        logger.exception(f"Failed to attach payment reference {reference} to order {order_id}")
        raise InternalError("Failed to store payment reference") from exc

    if updated == 1:
        logger.info(f"Order {order_id} payment reference {reference} attached")
        return
    get_order(db_sess, order_id)
    raise AlreadyInitiated(f"Payment for order {order_id} was already initiated")


def transition(db_sess: Session, order_id: int, target: str) -> bool:
    """Move ``order_id`` to ``target`` if its current status allows it.

    Returns True when this call applied the transition and False when the
    order was already terminal (or already in ``target``). Entering a success
    state runs the referral reward before the same commit.
    """
    sources = ALLOWED_SOURCES.get(target)
    if sources is None:
        raise ValidationError(f"Unknown target status {target!r}")

    try:
        applied = db_sess.execute(
            update(Order)
            .where(Order.order_id == order_id, Order.status.in_(sorted(sources)))
            .values(status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        if applied and target in SUCCESS_STATES:
            referrals.reward_if_eligible(db_sess, order_id)
        db_sess.commit()
    except SQLAlchemyError as exc:
        db_sess.rollback()
        logger.exception(f"Transition of order {order_id} to {target} failed")
        raise InternalError(f"Failed to move order {order_id} to {target}") from exc

    if applied:
        logger.info(f"Order {order_id} moved to {target}")
        return True

    order = get_order(db_sess, order_id)
    db_sess.refresh(order)
    if order.status in TERMINAL_STATES or order.status == target:
        logger.info(f"Order {order_id} already {order.status}, {target} ignored")
        return False
    raise InvalidState(
        f"Order {order_id} cannot move from {order.status} to {target}",
        status=order.status,
    )


def is_stale(order: Order, window: timedelta, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return now - order.created_at > window


def expire_if_stale(
    db_sess: Session, order: Order, window: timedelta, now: Optional[datetime] = None
) -> bool:
    """Lazily expire a pending order older than ``window``. No sweeper runs."""
    if order.status != PENDING or not is_stale(order, window, now):
        return False
    return transition(db_sess, order.order_id, EXPIRED)


def mark_processing(db_sess: Session, order_id: int) -> bool:
    return transition(db_sess, order_id, PROCESSING)


def complete_order(db_sess: Session, order_id: int) -> bool:
    return transition(db_sess, order_id, COMPLETED)
