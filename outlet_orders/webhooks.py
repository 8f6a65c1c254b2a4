"""Payment provider callback ingestion.

Providers deliver callbacks at least once and may deliver duplicates
concurrently. Handling is idempotent: the status change is the ledger's
conditional update, and every outcome short of a malformed request is
acknowledged so the provider does not keep retrying.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import ledger
from .errors import InternalError, ValidationError
from .models import Order

logger = logging.getLogger("outlet-orders.webhooks")

SUCCESS_STATUSES = frozenset({"1", "success", "berhasil", "paid"})
FAILURE_STATUSES = frozenset({"-1", "-2", "failed", "gagal", "expired", "cancelled"})

# actions reported in CallbackOutcome
UNKNOWN_TRANSACTION = "unknown_transaction"
ALREADY_PROCESSED = "already_processed"
MARKED_PAID = "marked_paid"
MARKED_CANCELLED = "marked_cancelled"
UNRECOGNIZED_STATUS = "unrecognized_status"
NO_TRANSITION = "no_transition"
PROCESSING_ERROR = "processing_error"


@dataclass(frozen=True)
class CallbackOutcome:
    action: str
    order_id: Optional[int] = None
    acknowledged: bool = True
    amount_mismatch: bool = False


def classify_status(status: Any) -> Optional[str]:
    """Map a provider status to ``paid``, ``cancelled`` or None."""
    if status is None:
        return None
    normalized = str(status).strip().lower()
    if normalized in SUCCESS_STATUSES:
        return ledger.PAID
    if normalized in FAILURE_STATUSES:
        return ledger.CANCELLED
    return None


def _first(payload: Dict[str, Any], *keys: str) -> Any:
    data = payload.get("Data") if isinstance(payload.get("Data"), dict) else {}
    for key in keys:
        if payload.get(key) not in (None, ""):
            return payload[key]
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def parse_amount(raw: Any) -> Optional[int]:
    """Whole-currency amount from a callback, or None when absent or unreadable."""
    if raw in (None, ""):
        return None
    try:
        return int(float(str(raw).strip()))
    except ValueError:
        logger.warning(f"Unparseable callback amount {raw!r}")
        return None


def decode_body(body: bytes, content_type: str = "") -> Dict[str, Any]:
    """Decode a callback body sent either as JSON or as a urlencoded form."""
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        raise ValidationError("Empty callback body")
    if "application/x-www-form-urlencoded" in content_type or not text.startswith("{"):
        return dict(parse_qsl(text, keep_blank_values=True))
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise ValidationError("Callback body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Callback body must be an object")
    return payload


def parse_callback(payload: Dict[str, Any]) -> Tuple[str, Any, Optional[int]]:
    transaction_id = _first(payload, "TransactionId", "transaction_id", "trx_id")
    if transaction_id is None:
        raise ValidationError("No payment reference in callback", code="MISSING_TRANSACTION_ID")
    status = _first(payload, "Status", "status_code", "status")
    amount = parse_amount(_first(payload, "Amount", "amount", "total"))
    return str(transaction_id), status, amount


def _check_amount(order: Order, amount: Optional[int]) -> bool:
    # mismatches are reported, never corrected or blocking
    if amount is None:
        logger.warning(
            f"Amount for order {order.order_id} is unverifiable, no readable amount in callback"
        )
        return False
    if amount != order.total:
        logger.warning(
            f"Amount mismatch for order {order.order_id}: "
            f"expected {order.total}, received {amount}"
        )
        return True
    return False


def handle_callback(
    db_sess: Session, transaction_id: str, status: Any, amount: Optional[int]
) -> CallbackOutcome:
    try:
        order = ledger.find_by_payment_reference(db_sess, transaction_id)
    except SQLAlchemyError:
        db_sess.rollback()
        logger.exception(f"Lookup of transaction {transaction_id} failed, callback acknowledged")
        return CallbackOutcome(action=PROCESSING_ERROR)

    if order is None:
        logger.warning(
            f"Callback for unknown transaction {transaction_id} "
            f"(status={status} amount={amount}), needs reconciliation"
        )
        return CallbackOutcome(action=UNKNOWN_TRANSACTION)

    if order.status in (ledger.PAID, ledger.CANCELLED):
        logger.info(f"Order {order.order_id} already {order.status}, callback ignored")
        return CallbackOutcome(action=ALREADY_PROCESSED, order_id=order.order_id)

    mismatch = _check_amount(order, amount)

    target = classify_status(status)
    if target is None:
        logger.warning(f"Unhandled payment status {status!r} for order {order.order_id}")
        return CallbackOutcome(
            action=UNRECOGNIZED_STATUS, order_id=order.order_id, amount_mismatch=mismatch
        )

    try:
        applied = ledger.transition(db_sess, order.order_id, target)
    except InternalError:
        logger.exception(f"Callback for order {order.order_id} could not be applied")
        return CallbackOutcome(
            action=PROCESSING_ERROR, order_id=order.order_id, amount_mismatch=mismatch
        )

    if not applied:
        return CallbackOutcome(
            action=NO_TRANSITION, order_id=order.order_id, amount_mismatch=mismatch
        )
    return CallbackOutcome(
        action=MARKED_PAID if target == ledger.PAID else MARKED_CANCELLED,
        order_id=order.order_id,
        amount_mismatch=mismatch,
    )
