import logging
import uuid
from dataclasses import asdict

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import catalog, customers, db, geo, ledger, payments, referrals, schemas, webhooks
from .config import Settings
from .deps import get_correlation_id, get_db, get_gateway, get_settings
from .errors import NotFound, OrderCoreError, ValidationError
from .logging_setup import configure_logging
from .metrics import (
    ORDERS_CREATED,
    PAYMENT_CALLBACKS,
    PAYMENTS_STARTED,
    MetricsMiddleware,
    metrics_endpoint,
)
from .payment_gateway import PaymentGateway
from .pricing import ItemRequest

# ----- Logging -----
configure_logging()
logger = logging.getLogger("outlet-orders")

# ----- Init -----
app = FastAPI(title="outlet-orders", version="v1")
app.add_middleware(MetricsMiddleware, service_name="outlet-orders")

STAFF_TARGETS = {ledger.PROCESSING, ledger.COMPLETED}


@app.on_event("startup")
def _on_startup() -> None:
    db.init_db()


@app.exception_handler(OrderCoreError)
async def _order_core_error(request: Request, exc: OrderCoreError):
    cid = (
        getattr(request.state, "correlation_id", None)
        or request.headers.get("x-correlation-id")
        or str(uuid.uuid4())
    )
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"{exc.code}: {exc.message}", extra={"correlation_id": cid})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail(cid)})


# ----- Infra Endpoints -----
@app.get("/health")
def health():
    return {"status": "ok", "service": "outlet-orders"}


@app.get("/metrics")
def metrics():
    return metrics_endpoint()


# ----- Outlets -----


@app.get("/v1/outlets/nearest", response_model=schemas.OutletMatchRead)
def nearest_outlet(
    lat: float = Query(...),
    lon: float = Query(...),
    db_sess: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return asdict(geo.find_nearest_outlet(db_sess, lat, lon, settings))


@app.get("/v1/outlets/available", response_model=schemas.OutletListResponse)
def available_outlets(
    lat: float = Query(...),
    lon: float = Query(...),
    db_sess: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return schemas.OutletListResponse(
        outlets=[asdict(m) for m in geo.list_available_outlets(db_sess, lat, lon, settings)]
    )


@app.get("/v1/outlets/{outlet_id}/products", response_model=schemas.ProductListResponse)
def outlet_products(outlet_id: int, db_sess: Session = Depends(get_db)):
    products = catalog.list_outlet_products(db_sess, outlet_id)
    return schemas.ProductListResponse(
        outlet_id=outlet_id,
        products=[schemas.ProductRead.model_validate(p) for p in products],
    )


@app.get("/v1/outlets/{outlet_id}/contact", response_model=schemas.OutletContactRead)
def outlet_contact(outlet_id: int, db_sess: Session = Depends(get_db)):
    contact = catalog.get_outlet_contact(db_sess, outlet_id)
    if contact is None:
        raise NotFound(f"Outlet {outlet_id} has no contact", code="CONTACT_NOT_FOUND")
    return contact


# ----- Customers & referrals -----


@app.post("/v1/customers", response_model=schemas.CustomerRead, status_code=201)
def create_customer(
    payload: schemas.CustomerCreateRequest,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
):
    customer = customers.register_customer(
        db_sess, payload.name, payload.phone, payload.referral_code
    )
    logger.info(f"Customer {customer.customer_id} registered", extra={"correlation_id": cid})
    return customer


@app.get("/v1/customers/by-phone/{phone}", response_model=schemas.CustomerRead)
def customer_by_phone(phone: str, db_sess: Session = Depends(get_db)):
    customer = customers.find_by_phone(db_sess, phone)
    if customer is None:
        raise NotFound(f"No customer with phone {phone}", code="CUSTOMER_NOT_FOUND")
    return customer


@app.post("/v1/customers/{customer_id}/referrer", response_model=schemas.CustomerRead)
def assign_referrer(
    customer_id: int,
    payload: schemas.AssignReferrerRequest,
    db_sess: Session = Depends(get_db),
):
    return referrals.assign_referrer(db_sess, customer_id, payload.referral_code)


@app.post(
    "/v1/customers/{customer_id}/locations",
    response_model=schemas.CustomerLocationRead,
    status_code=201,
)
def save_customer_location(
    customer_id: int,
    payload: schemas.CustomerLocationRequest,
    db_sess: Session = Depends(get_db),
):
    return customers.save_location(
        db_sess,
        customer_id,
        payload.latitude,
        payload.longitude,
        address=payload.address,
        label=payload.label,
        make_default=payload.is_default,
    )


@app.get(
    "/v1/customers/{customer_id}/locations",
    response_model=schemas.CustomerLocationListResponse,
)
def customer_locations(customer_id: int, db_sess: Session = Depends(get_db)):
    return schemas.CustomerLocationListResponse(
        locations=[
            schemas.CustomerLocationRead.model_validate(loc)
            for loc in customers.list_locations(db_sess, customer_id)
        ]
    )


@app.get(
    "/v1/customers/{customer_id}/locations/default",
    response_model=schemas.CustomerLocationRead,
)
def default_customer_location(customer_id: int, db_sess: Session = Depends(get_db)):
    location = customers.get_default_location(db_sess, customer_id)
    if location is None:
        raise NotFound(
            f"Customer {customer_id} has no default location", code="LOCATION_NOT_FOUND"
        )
    return location


@app.get("/v1/referrals/top", response_model=schemas.TopReferrersResponse)
def top_referrers(
    limit: int = Query(10, ge=1, le=100),
    db_sess: Session = Depends(get_db),
):
    return schemas.TopReferrersResponse(
        referrers=[
            schemas.CustomerRead.model_validate(c) for c in referrals.top_referrers(db_sess, limit)
        ]
    )


# ----- Orders -----


@app.post("/v1/orders", response_model=schemas.OrderRead, status_code=201)
def create_order(
    payload: schemas.CreateOrderRequest,
    db_sess: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cid: str = Depends(get_correlation_id),
):
    """
    1. Price items from the outlet catalog (client prices are ignored).
    2. Compute distance and delivery fee for the destination, if any.
    3. Persist order, items and delivery in one transaction as ``pending``.
    """
    delivery = None
    if payload.delivery is not None:
        delivery = ledger.DeliveryRequest(
            latitude=payload.delivery.latitude,
            longitude=payload.delivery.longitude,
            address=payload.delivery.address,
            notes=payload.delivery.notes,
        )
    try:
        order = ledger.create_order(
            db_sess,
            settings,
            payload.outlet_id,
            payload.customer_id,
            [ItemRequest(product_id=it.product_id, quantity=it.quantity) for it in payload.items],
            delivery,
        )
    except OrderCoreError as exc:
        ORDERS_CREATED.labels(exc.code).inc()
        raise

    ORDERS_CREATED.labels("CREATED").inc()
    logger.info(
        f"Order {order.order_id} created, total {order.total}",
        extra={"correlation_id": cid},
    )
    return order


@app.get("/v1/orders/{order_id}", response_model=schemas.OrderRead)
def get_order(order_id: int, db_sess: Session = Depends(get_db)):
    return ledger.get_order(db_sess, order_id)


@app.post("/v1/orders/{order_id}/payment", response_model=schemas.PaymentRead)
def create_payment(
    order_id: int,
    db_sess: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_gateway),
    cid: str = Depends(get_correlation_id),
):
    try:
        handle = payments.start_payment(db_sess, gateway, settings, order_id)
    except OrderCoreError as exc:
        PAYMENTS_STARTED.labels(exc.code).inc()
        raise

    PAYMENTS_STARTED.labels("STARTED").inc()
    logger.info(
        f"Order {order_id} payment {handle.transaction_id} started",
        extra={"correlation_id": cid},
    )
    return schemas.PaymentRead(
        order_id=order_id,
        transaction_id=handle.transaction_id,
        payment_url=handle.payment_url,
    )


@app.post("/v1/orders/{order_id}/status", response_model=schemas.OrderRead)
def update_status(
    order_id: int,
    payload: schemas.StatusUpdateRequest,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
):
    target = payload.status.strip().lower()
    if target not in STAFF_TARGETS:
        raise ValidationError(
            f"Status must be one of {sorted(STAFF_TARGETS)}", code="INVALID_STATUS"
        )
    applied = ledger.transition(db_sess, order_id, target)
    logger.info(
        f"Order {order_id} status update to {target} applied={applied}",
        extra={"correlation_id": cid},
    )
    return ledger.get_order(db_sess, order_id)


@app.get("/v1/payments/channels", response_model=schemas.PaymentChannelsResponse)
def payment_channels(gateway: PaymentGateway = Depends(get_gateway)):
    return schemas.PaymentChannelsResponse(methods=[asdict(m) for m in gateway.list_channels()])


# ----- Payment provider callback -----


@app.post("/v1/payments/callback", response_model=schemas.CallbackAck)
async def payment_callback(
    request: Request,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
):
    body = await request.body()
    payload = webhooks.decode_body(body, request.headers.get("content-type", ""))
    logger.info(f"Payment callback received: {payload}", extra={"correlation_id": cid})

    transaction_id, status, amount = webhooks.parse_callback(payload)
    outcome = await run_in_threadpool(
        webhooks.handle_callback, db_sess, transaction_id, status, amount
    )
    PAYMENT_CALLBACKS.labels(outcome.action).inc()
    return schemas.CallbackAck(success=True, message=outcome.action)
