import math
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from outlet_orders import deps
from outlet_orders.config import Settings
from outlet_orders.errors import ProviderError
from outlet_orders.main import app
from outlet_orders.models import Base, Customer, Outlet, OutletContact, OutletLocation, Product
from outlet_orders.payment_gateway import (
    PaymentChannel,
    PaymentGateway,
    PaymentHandle,
    PaymentMethod,
)

MALILI = (-2.5833, 120.3667)


def point_km_south(distance_km, origin=MALILI):
    """A point ``distance_km`` due south of ``origin`` along its meridian."""
    lat, lon = origin
    return lat - math.degrees(distance_km / 6371.0), lon


class FakeGateway(PaymentGateway):
    def __init__(self, settings, fail_with=None):
        super().__init__(settings)
        self.calls = []
        self.fail_with = fail_with

    def create_payment(self, order_id, amount, payer_phone, payer_name="", payer_email=""):
        self.calls.append(
            {"order_id": order_id, "amount": amount, "phone": payer_phone, "name": payer_name}
        )
        if self.fail_with is not None:
            raise ProviderError(self.fail_with)
        transaction_id = f"TRX-{order_id}-{len(self.calls)}"
        return PaymentHandle(
            transaction_id=transaction_id,
            payment_url=f"https://pay.example.com/{transaction_id}",
        )


    def list_channels(self):
        if self.fail_with is not None:
            raise ProviderError(self.fail_with)
        return [
            PaymentMethod(
                code="va",
                name="Virtual Account",
                channels=(PaymentChannel(code="bca", name="BCA", fee={"ActualFee": 4000}),),
            )
        ]


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        ipaymu_url="https://sandbox.ipaymu.test",
        ipaymu_va="1179000899",
        ipaymu_api_key="QbGcoO0Qds9sQFDmY0MWg1Tq.xtuh1",
        service_base_url="https://orders.example.com",
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_sess(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def catalog(db_sess):
    """Malili (delivering), a distant outlet and two disabled ones near Malili."""
    malili = Outlet(outlet_id=1, name="Malili", address="Malili, Sulawesi Selatan", active=True)
    malili.location = OutletLocation(
        latitude=MALILI[0],
        longitude=MALILI[1],
        radius_km=20.0,
        free_delivery_km=3.0,
        delivery_fee_per_km=2000,
        is_active=True,
    )
    sorowako = Outlet(outlet_id=2, name="Sorowako", address="Sorowako", active=True)
    sorowako.location = OutletLocation(
        latitude=-2.5333,
        longitude=121.3667,
        radius_km=20.0,
        free_delivery_km=3.0,
        delivery_fee_per_km=2000,
        is_active=True,
    )
    closed = Outlet(outlet_id=3, name="Closed", address=None, active=False)
    closed.location = OutletLocation(
        latitude=-2.60, longitude=120.3667, radius_km=20.0, is_active=True
    )
    relocating = Outlet(outlet_id=4, name="Relocating", address=None, active=True)
    relocating.location = OutletLocation(
        latitude=-2.60, longitude=120.3667, radius_km=20.0, is_active=False
    )

    products = [
        Product(product_id=10, outlet_id=1, name="Kopi Hitam", price=15000, active=True),
        Product(product_id=11, outlet_id=1, name="Nasi Goreng", price=25000, active=True),
        Product(product_id=12, outlet_id=1, name="Kopi Susu", price=18000, active=False),
        Product(product_id=20, outlet_id=2, name="Es Jeruk", price=15000, active=True),
    ]

    referrer = Customer(
        customer_id=100, name="Budi", phone="6281100000001", referral_code="BUDI0001"
    )
    referred = Customer(
        customer_id=101,
        name="Ani",
        phone="6281100000002",
        referral_code="ANI00002",
        referred_by=100,
    )
    loner = Customer(customer_id=102, name="Citra", phone="6281100000003", referral_code="CITRA003")
    contact = OutletContact(outlet_id=1, phone_number="6281200000099", contact_name="Admin Malili")

    db_sess.add_all(
        [malili, sorowako, closed, relocating, *products, referrer, referred, loner, contact]
    )
    db_sess.commit()

    return SimpleNamespace(
        outlet_id=1,
        far_outlet_id=2,
        kopi_id=10,
        nasi_id=11,
        inactive_product_id=12,
        other_outlet_product_id=20,
        referrer_id=100,
        customer_id=101,
        loner_id=102,
    )


@pytest.fixture
def gateway(settings):
    return FakeGateway(settings)


@pytest.fixture
def client(session_factory, settings, gateway):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[deps.get_db] = _get_db
    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
