import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import ledger
from .config import Settings
from .errors import AlreadyInitiated, Expired, InvalidState
from .models import Customer
from .payment_gateway import PaymentGateway, PaymentHandle

logger = logging.getLogger("outlet-orders.payments")


def start_payment(
    db_sess: Session,
    gateway: PaymentGateway,
    settings: Settings,
    order_id: int,
    now: Optional[datetime] = None,
) -> PaymentHandle:
    """Open a provider transaction for a pending order.

    Pending orders older than the payment window are expired here, on demand.
    Two overlapping calls for the same order can both reach the provider; only
    the first reference is stored and the other call gets AlreadyInitiated.
    """
    order = ledger.get_order(db_sess, order_id)

    if order.status != ledger.PENDING:
        raise InvalidState(
            f"Order status is {order.status}, not pending", status=order.status
        )

    window = timedelta(minutes=settings.payment_expiry_minutes)
    if ledger.expire_if_stale(db_sess, order, window, now):
        logger.info(f"Order {order_id} expired before payment")
        raise Expired(f"Order {order_id} has expired")

    if order.payment_reference:
        raise AlreadyInitiated(f"Payment for order {order_id} was already initiated")

    customer = db_sess.get(Customer, order.customer_id)
    handle = gateway.create_payment(
        order.order_id,
        order.total,
        payer_phone=customer.phone if customer is not None else "",
        payer_name=customer.name if customer is not None else "",
    )

    ledger.attach_payment_reference(db_sess, order_id, handle.transaction_id, handle.payment_url)
    logger.info(f"Payment {handle.transaction_id} opened for order {order_id}")
    return handle
