"""Outlet matching and delivery fees.

Distances are great-circle distances from the haversine formula. Everything
here is read-only; the loaders only select from the outlet catalog.
"""

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import Settings
from .errors import InvalidArgument, NoOutletAvailable
from .models import Outlet, OutletLocation

logger = logging.getLogger("outlet-orders.geo")

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class OutletSite:
    outlet_id: int
    name: str
    address: Optional[str]
    latitude: float
    longitude: float
    radius_km: float
    free_delivery_km: float
    fee_per_km: int


@dataclass(frozen=True)
class OutletMatch:
    outlet_id: int
    name: str
    address: Optional[str]
    distance_km: float
    can_deliver: bool
    radius_km: float
    free_delivery_km: float
    fee_per_km: int


def validate_coordinates(lat: float, lon: float) -> None:
    if lat is None or lon is None:
        raise InvalidArgument("latitude and longitude are required")
    if not -90.0 <= lat <= 90.0:
        raise InvalidArgument(f"latitude {lat} is out of range")
    if not -180.0 <= lon <= 180.0:
        raise InvalidArgument(f"longitude {lon} is out of range")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def round_distance(distance_km: float) -> float:
    return round(distance_km, 2)


def calculate_delivery_fee(distance_km: float, free_radius_km: float, fee_per_km: int) -> int:
    """Fee for ``distance_km``: free inside ``free_radius_km`` (inclusive),
    then ``fee_per_km`` per chargeable km, floored to a whole currency unit."""
    if distance_km is None or free_radius_km is None or fee_per_km is None:
        raise InvalidArgument("distance, free radius and fee per km are required")
    if distance_km < 0 or free_radius_km < 0 or fee_per_km < 0:
        raise InvalidArgument("distance, free radius and fee per km must be non-negative")
    if distance_km <= free_radius_km:
        return 0
    # decimal arithmetic: 4.10 - 3 must be exactly 1.10, not 1.0999...
    chargeable = Decimal(str(distance_km)) - Decimal(str(free_radius_km))
    fee = chargeable * Decimal(str(fee_per_km))
    return int(fee.to_integral_value(rounding=ROUND_FLOOR))


def rank_outlets(sites: Iterable[OutletSite], lat: float, lon: float) -> List[OutletMatch]:
    """Order ``sites`` by distance from (lat, lon); equal distances by outlet id."""
    ranked = []
    for site in sites:
        distance = haversine_km(lat, lon, site.latitude, site.longitude)
        ranked.append((distance, site.outlet_id, site))
    ranked.sort(key=lambda entry: (entry[0], entry[1]))
    return [
        OutletMatch(
            outlet_id=site.outlet_id,
            name=site.name,
            address=site.address,
            distance_km=round_distance(distance),
            can_deliver=distance <= site.radius_km,
            radius_km=site.radius_km,
            free_delivery_km=site.free_delivery_km,
            fee_per_km=site.fee_per_km,
        )
        for distance, _, site in ranked
    ]


def _to_site(outlet: Outlet, location: OutletLocation, settings: Settings) -> OutletSite:
    return OutletSite(
        outlet_id=outlet.outlet_id,
        name=outlet.name,
        address=outlet.address,
        latitude=location.latitude,
        longitude=location.longitude,
        radius_km=(
            location.radius_km
            if location.radius_km is not None
            else settings.default_service_radius_km
        ),
        free_delivery_km=(
            location.free_delivery_km
            if location.free_delivery_km is not None
            else settings.default_free_delivery_km
        ),
        fee_per_km=(
            location.delivery_fee_per_km
            if location.delivery_fee_per_km is not None
            else settings.default_fee_per_km
        ),
    )


def load_active_sites(db_sess: Session, settings: Settings) -> List[OutletSite]:
    rows = db_sess.execute(
        select(Outlet, OutletLocation)
        .join(OutletLocation, OutletLocation.outlet_id == Outlet.outlet_id)
        .where(Outlet.active.is_(True), OutletLocation.is_active.is_(True))
        .order_by(Outlet.outlet_id)
    ).all()
    return [_to_site(outlet, location, settings) for outlet, location in rows]


def load_site(db_sess: Session, outlet_id: int, settings: Settings) -> Optional[OutletSite]:
    row = db_sess.execute(
        select(Outlet, OutletLocation)
        .join(OutletLocation, OutletLocation.outlet_id == Outlet.outlet_id)
        .where(
            Outlet.outlet_id == outlet_id,
            Outlet.active.is_(True),
            OutletLocation.is_active.is_(True),
        )
    ).first()
    if row is None:
        return None
    return _to_site(row[0], row[1], settings)


def list_available_outlets(
    db_sess: Session, lat: float, lon: float, settings: Settings
) -> List[OutletMatch]:
    validate_coordinates(lat, lon)
    return rank_outlets(load_active_sites(db_sess, settings), lat, lon)


def find_nearest_outlet(
    db_sess: Session, lat: float, lon: float, settings: Settings
) -> OutletMatch:
    matches = list_available_outlets(db_sess, lat, lon, settings)
    if not matches:
        logger.warning(f"No active outlet with an active location for ({lat}, {lon})")
        raise NoOutletAvailable("No active outlet is available")
    return matches[0]
