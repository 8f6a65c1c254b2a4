import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidProduct, ValidationError
from .models import Product

logger = logging.getLogger("outlet-orders.pricing")


@dataclass(frozen=True)
class ItemRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price: int
    subtotal: int


@dataclass(frozen=True)
class PricedOrder:
    outlet_id: int
    lines: Tuple[PricedLine, ...]
    items_total: int


def _validate_items(items: Sequence[ItemRequest]) -> None:
    if not items:
        raise ValidationError("items array is required and cannot be empty", code="EMPTY_ORDER")
    for item in items:
        if item.product_id is None:
            raise ValidationError("Each item must have product_id")
        if item.quantity is None or item.quantity < 1:
            raise ValidationError(
                f"Item for product {item.product_id} must have quantity >= 1",
                product_id=item.product_id,
            )


def price_order(db_sess: Session, outlet_id: int, items: Sequence[ItemRequest]) -> PricedOrder:
    """Price ``items`` from the outlet's catalog.

    All referenced products are read in one statement so a single order never
    mixes prices from different points in time. Client prices are never
    consulted: only product ids and quantities come in.
    """
    _validate_items(items)

    product_ids = sorted({item.product_id for item in items})
    products = db_sess.execute(
        select(Product).where(
            Product.product_id.in_(product_ids),
            Product.outlet_id == outlet_id,
            Product.active.is_(True),
        )
    ).scalars().all()
    catalog = {product.product_id: product for product in products}

    missing = [pid for pid in product_ids if pid not in catalog]
    if missing:
        logger.info(f"Rejecting order for outlet {outlet_id}, unavailable products {missing}")
        raise InvalidProduct(
            f"Products {missing} not found, inactive or not sold by outlet {outlet_id}",
            product_ids=missing,
        )

    lines: List[PricedLine] = []
    for item in items:
        product = catalog[item.product_id]
        lines.append(
            PricedLine(
                product_id=product.product_id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price=product.price,
                subtotal=product.price * item.quantity,
            )
        )

    return PricedOrder(
        outlet_id=outlet_id,
        lines=tuple(lines),
        items_total=sum(line.subtotal for line in lines),
    )
