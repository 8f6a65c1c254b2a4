import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")


def _get_int(name: str, fallback: int) -> int:
    raw_value = os.getenv(name)
    if not raw_value:
        return fallback
    try:
        return int(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc


def _get_float(name: str, fallback: float) -> float:
    raw_value = os.getenv(name)
    if not raw_value:
        return fallback
    try:
        return float(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number") from exc


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./outlet_orders.db"
    ipaymu_url: str = "https://sandbox.ipaymu.com"
    ipaymu_va: str = ""
    ipaymu_api_key: str = ""
    ipaymu_payment_method: str = "va"
    ipaymu_payment_channel: str = "bca"
    # public base URL of this service, used to build the provider notify URL
    service_base_url: str = "http://localhost:8000"
    payment_expiry_minutes: int = 15
    default_service_radius_km: float = 20.0
    default_free_delivery_km: float = 3.0
    default_fee_per_km: int = 2000
    provider_timeout_seconds: float = 10.0

    @property
    def callback_url(self) -> str:
        return f"{self.service_base_url.rstrip('/')}/v1/payments/callback"


def load_settings() -> Settings:
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        ipaymu_url=os.getenv("IPAYMU_URL", defaults.ipaymu_url),
        ipaymu_va=os.getenv("IPAYMU_VA", defaults.ipaymu_va),
        ipaymu_api_key=os.getenv("IPAYMU_API_KEY", defaults.ipaymu_api_key),
        ipaymu_payment_method=os.getenv(
            "IPAYMU_PAYMENT_METHOD", defaults.ipaymu_payment_method
        ),
        ipaymu_payment_channel=os.getenv(
            "IPAYMU_PAYMENT_CHANNEL", defaults.ipaymu_payment_channel
        ),
        service_base_url=os.getenv("SERVICE_BASE_URL", defaults.service_base_url),
        payment_expiry_minutes=_get_int(
            "PAYMENT_EXPIRY_MINUTES", defaults.payment_expiry_minutes
        ),
        default_service_radius_km=_get_float(
            "DEFAULT_SERVICE_RADIUS_KM", defaults.default_service_radius_km
        ),
        default_free_delivery_km=_get_float(
            "DEFAULT_FREE_DELIVERY_KM", defaults.default_free_delivery_km
        ),
        default_fee_per_km=_get_int("DEFAULT_FEE_PER_KM", defaults.default_fee_per_km),
        provider_timeout_seconds=_get_float(
            "PROVIDER_TIMEOUT_SECONDS", defaults.provider_timeout_seconds
        ),
    )
