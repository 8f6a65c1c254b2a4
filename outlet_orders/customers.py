import logging
import re
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import geo, referrals
from .errors import InternalError, NotFound, ValidationError
from .models import Customer, CustomerLocation, utcnow

logger = logging.getLogger("outlet-orders.customers")

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    return _NON_DIGITS.sub("", phone or "")


def validate_phone(phone: str) -> bool:
    # Indonesian numbers in international form: 62 prefix, at least 10 digits
    cleaned = normalize_phone(phone)
    return cleaned.startswith("62") and len(cleaned) >= 10


def get_customer(db_sess: Session, customer_id: int) -> Customer:
    customer = db_sess.get(Customer, customer_id)
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found", code="CUSTOMER_NOT_FOUND")
    return customer


def find_by_phone(db_sess: Session, phone: str) -> Optional[Customer]:
    return db_sess.execute(
        select(Customer).where(Customer.phone == normalize_phone(phone))
    ).scalar_one_or_none()


def register_customer(
    db_sess: Session, name: str, phone: str, referral_code: Optional[str] = None
) -> Customer:
    """Create a customer with a fresh referral code.

    An unknown ``referral_code`` is logged and ignored rather than failing the
    registration.
    """
    if not (name or "").strip():
        raise ValidationError("Customer name is required")
    if not validate_phone(phone):
        raise ValidationError("Invalid phone number format", code="INVALID_PHONE")
    phone = normalize_phone(phone)
    if find_by_phone(db_sess, phone) is not None:
        raise ValidationError("Phone number already registered", code="PHONE_ALREADY_REGISTERED")

    referrer_id = None
    if referral_code:
        referrer = referrals.find_by_referral_code(db_sess, referral_code)
        if referrer is None:
            logger.info(f"Ignoring unknown referral code {referral_code} for {phone}")
        else:
            referrer_id = referrer.customer_id

    customer = Customer(
        name=name.strip(),
        phone=phone,
        referral_code=referrals.generate_referral_code(db_sess),
        referred_by=referrer_id,
        total_referrals=0,
    )
    try:
        db_sess.add(customer)
        db_sess.commit()
    except IntegrityError as exc:
        db_sess.rollback()
        raise ValidationError(
            "Phone number already registered", code="PHONE_ALREADY_REGISTERED"
        ) from exc
    except SQLAlchemyError as exc:
        db_sess.rollback()
        logger.exception(f"Failed to register customer {phone}")
        raise InternalError("Failed to register customer") from exc

    db_sess.refresh(customer)
    logger.info(
        f"Customer {customer.customer_id} registered with code {customer.referral_code}"
    )
    return customer


def save_location(
    db_sess: Session,
    customer_id: int,
    latitude: float,
    longitude: float,
    address: Optional[str] = None,
    label: Optional[str] = None,
    make_default: bool = False,
) -> CustomerLocation:
    """Save a delivery location for a customer.

    A location at the same coordinates is updated in place. Making it the
    default clears the flag on every other saved location of the customer.
    """
    get_customer(db_sess, customer_id)
    geo.validate_coordinates(latitude, longitude)

    location = db_sess.execute(
        select(CustomerLocation).where(
            CustomerLocation.customer_id == customer_id,
            CustomerLocation.latitude == latitude,
            CustomerLocation.longitude == longitude,
        )
    ).scalar_one_or_none()

    try:
        if make_default:
            others = update(CustomerLocation).where(CustomerLocation.customer_id == customer_id)
            if location is not None:
                others = others.where(CustomerLocation.location_id != location.location_id)
            db_sess.execute(
                others.values(is_default=False).execution_options(synchronize_session=False)
            )
        if location is None:
            location = CustomerLocation(
                customer_id=customer_id, latitude=latitude, longitude=longitude
            )
            db_sess.add(location)
        location.address = address
        location.label = label
        location.is_default = make_default
        location.updated_at = utcnow()
        db_sess.commit()
    except SQLAlchemyError as exc:
        db_sess.rollback()
        logger.exception(f"Failed to save location for customer {customer_id}")
        raise InternalError("Failed to save customer location") from exc

    db_sess.refresh(location)
    return location


def get_default_location(db_sess: Session, customer_id: int) -> Optional[CustomerLocation]:
    get_customer(db_sess, customer_id)
    return db_sess.execute(
        select(CustomerLocation)
        .where(CustomerLocation.customer_id == customer_id, CustomerLocation.is_default.is_(True))
        .order_by(CustomerLocation.updated_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_locations(db_sess: Session, customer_id: int) -> List[CustomerLocation]:
    """Saved locations, default first, then most recently updated."""
    get_customer(db_sess, customer_id)
    return list(
        db_sess.execute(
            select(CustomerLocation)
            .where(CustomerLocation.customer_id == customer_id)
            .order_by(
                CustomerLocation.is_default.desc(),
                CustomerLocation.updated_at.desc(),
                CustomerLocation.location_id.desc(),
            )
        ).scalars()
    )
