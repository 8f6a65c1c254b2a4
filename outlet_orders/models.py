from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    # naive UTC, matching what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Outlet(Base):
    __tablename__ = "outlets"

    outlet_id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

    location = relationship(
        "OutletLocation", back_populates="outlet", uselist=False, cascade="all, delete-orphan"
    )


class OutletLocation(Base):
    __tablename__ = "outlet_locations"

    location_id = Column(Integer, primary_key=True, index=True)
    # unique: one location record drives routing per outlet
    outlet_id = Column(Integer, ForeignKey("outlets.outlet_id"), nullable=False, unique=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_km = Column(Float, nullable=True)
    free_delivery_km = Column(Float, nullable=True)
    delivery_fee_per_km = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    outlet = relationship("Outlet", back_populates="location")


class OutletContact(Base):
    __tablename__ = "outlet_contacts"

    contact_id = Column(Integer, primary_key=True, index=True)
    outlet_id = Column(Integer, ForeignKey("outlets.outlet_id"), nullable=False, index=True)
    phone_number = Column(String(50), nullable=False)
    contact_name = Column(String(255), nullable=True)
    is_primary = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False, unique=True, index=True)
    referral_code = Column(String(50), nullable=False, unique=True, index=True)
    referred_by = Column(Integer, ForeignKey("customers.customer_id"), nullable=True, index=True)
    total_referrals = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    locations = relationship(
        "CustomerLocation", back_populates="customer", cascade="all, delete-orphan"
    )


class CustomerLocation(Base):
    __tablename__ = "customer_locations"

    location_id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.customer_id"), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(Text, nullable=True)
    label = Column(String(100), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=utcnow)

    customer = relationship("Customer", back_populates="locations")


class Product(Base):
    __tablename__ = "products"

    product_id = Column(Integer, primary_key=True, index=True)
    outlet_id = Column(Integer, ForeignKey("outlets.outlet_id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True)
    outlet_id = Column(Integer, ForeignKey("outlets.outlet_id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.customer_id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    items_total = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    payment_reference = Column(String(100), nullable=True, unique=True, index=True)
    payment_url = Column(Text, nullable=True)
    referral_rewarded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )
    delivery = relationship(
        "OrderDelivery",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    order_item_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), nullable=False)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)  # snapshot of price at order time
    subtotal = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")


class OrderDelivery(Base):
    __tablename__ = "order_delivery"

    delivery_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=False, unique=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    distance_km = Column(Float, nullable=False)
    delivery_fee = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="delivery")
