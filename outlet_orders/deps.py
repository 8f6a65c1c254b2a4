import uuid
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request

from . import db
from .config import Settings, load_settings
from .payment_gateway import PaymentGateway


def get_correlation_id(request: Request, x_correlation_id: Optional[str] = Header(None)):
    cid = x_correlation_id or str(uuid.uuid4())
    request.state.correlation_id = cid
    return cid


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def get_db():
    s = db.SessionLocal()
    try:
        yield s
    finally:
        s.close()


def get_gateway(settings: Settings = Depends(get_settings)) -> PaymentGateway:
    return PaymentGateway(settings)
