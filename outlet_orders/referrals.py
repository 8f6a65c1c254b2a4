"""Referral graph and the one-time referral reward.

The reward used to be a row trigger on ``orders``; here it is an explicit
call made by :mod:`ledger` inside the transaction that moves an order into a
successful terminal state.
"""

import logging
import secrets
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import InternalError, NotFound, ValidationError
from .models import Customer, Order

logger = logging.getLogger("outlet-orders.referrals")

REFERRAL_CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 20


def generate_referral_code(db_sess: Session) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = secrets.token_hex(REFERRAL_CODE_LENGTH // 2).upper()
        taken = db_sess.execute(
            select(Customer.customer_id).where(Customer.referral_code == code)
        ).first()
        if taken is None:
            return code
    raise InternalError("Could not generate a unique referral code")


def find_by_referral_code(db_sess: Session, code: str) -> Optional[Customer]:
    if not code:
        return None
    return db_sess.execute(
        select(Customer).where(Customer.referral_code == code.strip().upper())
    ).scalar_one_or_none()


def _ancestors(db_sess: Session, customer_id: int):
    seen = set()
    current = customer_id
    while current is not None and current not in seen:
        seen.add(current)
        yield current
        current = db_sess.execute(
            select(Customer.referred_by).where(Customer.customer_id == current)
        ).scalar_one_or_none()


def assign_referrer(db_sess: Session, customer_id: int, referral_code: str) -> Customer:
    """Attach a referrer to a customer who has none yet.

    A customer cannot refer themselves or any of their own referrers.
    """
    customer = db_sess.get(Customer, customer_id)
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found", code="CUSTOMER_NOT_FOUND")
    if customer.referred_by is not None:
        raise ValidationError("Customer already has a referrer", code="REFERRER_ALREADY_SET")

    referrer = find_by_referral_code(db_sess, referral_code)
    if referrer is None:
        raise ValidationError("Unknown referral code", code="INVALID_REFERRAL_CODE")
    if customer_id in _ancestors(db_sess, referrer.customer_id):
        raise ValidationError("Referral would create a cycle", code="REFERRAL_CYCLE")

    customer.referred_by = referrer.customer_id
    db_sess.commit()
    db_sess.refresh(customer)
    logger.info(f"Customer {customer_id} referred by {referrer.customer_id}")
    return customer


def reward_if_eligible(db_sess: Session, order_id: int) -> bool:
    """Credit the referrer of the order's customer, at most once per order.

    Does not commit. The ``referral_rewarded`` flip is a conditional update, so
    of two concurrent or repeated triggers only one sees a matched row and
    increments the counter.
    """
    referrer_id = db_sess.execute(
        select(Customer.referred_by)
        .join(Order, Order.customer_id == Customer.customer_id)
        .where(Order.order_id == order_id)
    ).scalar_one_or_none()
    if referrer_id is None:
        return False

    flipped = db_sess.execute(
        update(Order)
        .where(Order.order_id == order_id, Order.referral_rewarded.is_(False))
        .values(referral_rewarded=True)
        .execution_options(synchronize_session=False)
    ).rowcount
    if flipped != 1:
        return False

    db_sess.execute(
        update(Customer)
        .where(Customer.customer_id == referrer_id)
        .values(total_referrals=Customer.total_referrals + 1)
        .execution_options(synchronize_session=False)
    )
    logger.info(f"Referral reward for order {order_id} credited to customer {referrer_id}")
    return True


def top_referrers(db_sess: Session, limit: int = 10) -> List[Customer]:
    return list(
        db_sess.execute(
            select(Customer)
            .where(Customer.total_referrals > 0)
            .order_by(Customer.total_referrals.desc(), Customer.customer_id)
            .limit(limit)
        ).scalars()
    )
