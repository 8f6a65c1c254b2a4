"""Read-only outlet catalog: the products an outlet sells and who to contact."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Outlet, OutletContact, Product

logger = logging.getLogger("outlet-orders.catalog")


def get_active_outlet(db_sess: Session, outlet_id: int) -> Outlet:
    outlet = db_sess.get(Outlet, outlet_id)
    if outlet is None or not outlet.active:
        raise NotFound(f"Outlet {outlet_id} not found or inactive", code="OUTLET_NOT_FOUND")
    return outlet


def list_outlet_products(db_sess: Session, outlet_id: int) -> List[Product]:
    """Active products of an active outlet, ordered by name."""
    get_active_outlet(db_sess, outlet_id)
    return list(
        db_sess.execute(
            select(Product)
            .where(Product.outlet_id == outlet_id, Product.active.is_(True))
            .order_by(Product.name, Product.product_id)
        ).scalars()
    )


def get_outlet_contact(db_sess: Session, outlet_id: int) -> Optional[OutletContact]:
    get_active_outlet(db_sess, outlet_id)
    contact = db_sess.execute(
        select(OutletContact)
        .where(OutletContact.outlet_id == outlet_id, OutletContact.is_primary.is_(True))
        .order_by(OutletContact.contact_id)
        .limit(1)
    ).scalar_one_or_none()
    if contact is None:
        logger.info(f"Outlet {outlet_id} has no primary contact")
    return contact
