"""iPaymu v2 client: direct payments and the payment channel listing.

Payment requests are signed the way the iPaymu v2 API expects: an
HMAC-SHA256, keyed by the API key, over
``POST:{va}:{sha256(body)}:{api_key}``. The client makes one attempt with a
bounded timeout; retry policy belongs to the caller. The channel listing
authenticates with the API key as a bearer token.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import Settings
from .errors import ProviderError

logger = logging.getLogger("outlet-orders.payment-gateway")

DIRECT_PAYMENT_PATH = "/api/v2/payment/direct"
PAYMENT_CHANNELS_PATH = "/api/v2/payment-channels"


@dataclass(frozen=True)
class PaymentHandle:
    transaction_id: str
    payment_url: Optional[str]


@dataclass(frozen=True)
class PaymentChannel:
    code: str
    name: str
    description: str = ""
    logo: str = ""
    fee: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentMethod:
    code: str
    name: str
    description: str = ""
    channels: Tuple[PaymentChannel, ...] = ()


def sign_body(va: str, api_key: str, body: str, method: str = "POST") -> str:
    body_hash = hashlib.sha256(body.encode("utf-8")).hexdigest().lower()
    string_to_sign = f"{method}:{va}:{body_hash}:{api_key}"
    return hmac.new(
        api_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


class PaymentGateway:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None) -> None:
        self.settings = settings
        self._client = client

    def _http_client(self) -> httpx.Client:
        if self._client is not None:
            return self._client
        return httpx.Client(timeout=self.settings.provider_timeout_seconds)

    def build_request(
        self,
        order_id: int,
        amount: int,
        payer_phone: str,
        payer_name: str = "",
        payer_email: str = "",
    ) -> Dict[str, Any]:
        return {
            "name": payer_name or "Customer",
            "phone": payer_phone,
            "email": payer_email,
            "amount": int(amount),
            "notifyUrl": self.settings.callback_url,
            "expired": self.settings.payment_expiry_minutes,
            "expiredType": "minutes",
            "referenceId": str(order_id),
            "comments": f"Order {order_id}",
            "paymentMethod": self.settings.ipaymu_payment_method,
            "paymentChannel": self.settings.ipaymu_payment_channel,
        }

    def create_payment(
        self,
        order_id: int,
        amount: int,
        payer_phone: str,
        payer_name: str = "",
        payer_email: str = "",
    ) -> PaymentHandle:
        body = json.dumps(
            self.build_request(order_id, amount, payer_phone, payer_name, payer_email),
            separators=(",", ":"),
        )
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "va": self.settings.ipaymu_va,
            "signature": sign_body(self.settings.ipaymu_va, self.settings.ipaymu_api_key, body),
            "timestamp": datetime.now().strftime("%Y%m%d%H%M%S"),
        }
        url = f"{self.settings.ipaymu_url.rstrip('/')}{DIRECT_PAYMENT_PATH}"

        client = self._http_client()
        try:
            response = client.post(url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(f"Payment provider call for order {order_id} failed: {exc}")
            raise ProviderError(f"Payment provider unreachable: {exc}") from exc
        finally:
            if client is not self._client:
                client.close()

        return self._parse_response(order_id, response)

    def _parse_response(self, order_id: int, response: httpx.Response) -> PaymentHandle:
        try:
            result = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Payment provider returned a non-JSON response ({response.status_code})"
            ) from exc

        if response.status_code >= 400 or not result.get("Success", False):
            message = result.get("Message") or f"HTTP {response.status_code}"
            logger.warning(f"Payment provider rejected order {order_id}: {message}")
            raise ProviderError(f"Failed to create payment: {message}")

        data = result.get("Data") or {}
        transaction_id = data.get("TransactionId")
        if transaction_id in (None, ""):
            raise ProviderError("Payment provider response has no TransactionId")
        return PaymentHandle(transaction_id=str(transaction_id), payment_url=data.get("Url"))

    def list_channels(self) -> List[PaymentMethod]:
        """Payment methods the merchant account can use, each with its channels."""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.ipaymu_api_key}",
            "va": self.settings.ipaymu_va,
            "timestamp": datetime.now().strftime("%Y%m%d%H%M%S"),
        }
        url = f"{self.settings.ipaymu_url.rstrip('/')}{PAYMENT_CHANNELS_PATH}"

        client = self._http_client()
        try:
            response = client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(f"Payment channel lookup failed: {exc}")
            raise ProviderError(f"Payment provider unreachable: {exc}") from exc
        finally:
            if client is not self._client:
                client.close()

        try:
            result = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Payment provider returned a non-JSON response ({response.status_code})"
            ) from exc
        if response.status_code >= 400 or result.get("Success") is False:
            message = result.get("Message") or f"HTTP {response.status_code}"
            logger.warning(f"Payment channel lookup rejected: {message}")
            raise ProviderError(f"Failed to get payment channels: {message}")

        return [
            PaymentMethod(
                code=str(method.get("Code") or ""),
                name=method.get("Name") or "",
                description=method.get("Description") or "",
                channels=tuple(
                    PaymentChannel(
                        code=str(channel.get("Code") or ""),
                        name=channel.get("Name") or "",
                        description=channel.get("Description") or "",
                        logo=channel.get("Logo") or "",
                        fee=channel.get("TransactionFee") or {},
                    )
                    for channel in method.get("Channels") or []
                ),
            )
            for method in result.get("Data") or []
        ]
