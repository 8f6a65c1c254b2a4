from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OutletMatchRead(BaseModel):
    outlet_id: int
    name: str
    address: Optional[str]
    distance_km: float
    can_deliver: bool
    radius_km: float
    free_delivery_km: float
    fee_per_km: int

    class Config:
        from_attributes = True


class OutletListResponse(BaseModel):
    outlets: List[OutletMatchRead]


class ProductRead(BaseModel):
    product_id: int
    outlet_id: int
    name: str
    price: int

    class Config:
        from_attributes = True


class ProductListResponse(BaseModel):
    outlet_id: int
    products: List[ProductRead]


class OutletContactRead(BaseModel):
    outlet_id: int
    phone_number: str
    contact_name: Optional[str]

    class Config:
        from_attributes = True


class CustomerCreateRequest(BaseModel):
    name: str
    phone: str
    referral_code: Optional[str] = None


class AssignReferrerRequest(BaseModel):
    referral_code: str


class CustomerRead(BaseModel):
    customer_id: int
    name: str
    phone: str
    referral_code: str
    referred_by: Optional[int]
    total_referrals: int

    class Config:
        from_attributes = True


class TopReferrersResponse(BaseModel):
    referrers: List[CustomerRead]


class CustomerLocationRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None
    label: Optional[str] = Field(None, max_length=100)
    is_default: bool = False


class CustomerLocationRead(BaseModel):
    location_id: int
    customer_id: int
    latitude: float
    longitude: float
    address: Optional[str]
    label: Optional[str]
    is_default: bool
    updated_at: datetime

    class Config:
        from_attributes = True


class CustomerLocationListResponse(BaseModel):
    locations: List[CustomerLocationRead]


class OrderItemRequest(BaseModel):
    # prices and totals sent by clients are ignored; only ids and quantities count
    product_id: int
    quantity: int = Field(..., ge=1)


class DeliveryRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = Field(..., min_length=1)
    notes: Optional[str] = None


class CreateOrderRequest(BaseModel):
    outlet_id: int
    customer_id: int
    items: List[OrderItemRequest] = Field(..., min_length=1)
    delivery: Optional[DeliveryRequest] = None


class OrderItemRead(BaseModel):
    order_item_id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: int
    subtotal: int

    class Config:
        from_attributes = True


class OrderDeliveryRead(BaseModel):
    latitude: float
    longitude: float
    address: str
    notes: Optional[str]
    distance_km: float
    delivery_fee: int

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    order_id: int
    outlet_id: int
    customer_id: int
    status: str
    items_total: int
    delivery_fee: int
    total: int
    payment_reference: Optional[str]
    payment_url: Optional[str]
    referral_rewarded: bool
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemRead]
    delivery: Optional[OrderDeliveryRead]

    class Config:
        from_attributes = True


class PaymentRead(BaseModel):
    order_id: int
    transaction_id: str
    payment_url: Optional[str]


class StatusUpdateRequest(BaseModel):
    status: str


class CallbackAck(BaseModel):
    success: bool = True
    message: str


class PaymentChannelRead(BaseModel):
    code: str
    name: str
    description: str
    logo: str
    fee: Dict[str, Any]


class PaymentMethodRead(BaseModel):
    code: str
    name: str
    description: str
    channels: List[PaymentChannelRead]


class PaymentChannelsResponse(BaseModel):
    methods: List[PaymentMethodRead]
