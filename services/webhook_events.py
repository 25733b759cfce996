# services/webhook_events.py
"""
Provider event taxonomies -> CanonicalEvent.

One parser per provider. A parser returns None for event types that carry
no payment state (they are acknowledged and ignored) and raises
ValidationError when a recognised event is missing the data it needs.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from exceptions import ValidationError
from models.enums import PaymentProvider
from providers.validation import from_minor_units
from schemas.webhook_event import CanonicalEvent, EventKind

logger = structlog.get_logger(__name__)


def _dig(data: Any, *path: str) -> Any:
     for key in path:
          if not isinstance(data, dict):
               return None
          data = data.get(key)
     return data


def _ids(*values: Optional[str]) -> List[str]:
     """Non-empty ids, de-duplicated, order kept."""
     ids: List[str] = []
     for value in values:
          if value not in (None, "") and str(value) not in ids:
               ids.append(str(value))
     return ids


def _timestamp(value: Any) -> Optional[datetime]:
     """Epoch seconds or ISO-8601 -> naive UTC."""
     if value in (None, ""):
          return None
     if isinstance(value, (int, float)):
          return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
     try:
          parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
     except ValueError:
          return None
     if parsed.tzinfo is not None:
          parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
     return parsed


def _decimal(value: Any) -> Optional[Decimal]:
     if value in (None, ""):
          return None
     return Decimal(str(value))


def _upper(value: Optional[str]) -> Optional[str]:
     return value.upper() if value else None


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------

STRIPE_INTENT_KINDS = {
     "payment_intent.succeeded": EventKind.SUCCEEDED,
     "payment_intent.payment_failed": EventKind.FAILED,
     "payment_intent.canceled": EventKind.CANCELLED,
     "payment_intent.processing": EventKind.PENDING,
}


def parse_stripe_event(payload: Dict[str, Any]) -> Optional[CanonicalEvent]:
     event_type = payload.get("type")
     obj = _dig(payload, "data", "object") or {}
     common = dict(
          provider=PaymentProvider.STRIPE,
          event_id=payload.get("id"),
          event_type=event_type,
          occurred_at=_timestamp(payload.get("created")),
     )
     currency = _upper(obj.get("currency"))

     if event_type == "checkout.session.completed":
          paid = obj.get("payment_status") in ("paid", "no_payment_required")
          amount = obj.get("amount_total")
          return CanonicalEvent(
               **common,
               kind=EventKind.SUCCEEDED if paid else EventKind.PENDING,
               # The payment intent is shared with payment_intent.* events
               external_ids=_ids(obj.get("payment_intent") or obj.get("id")),
               link_reference=_dig(obj, "metadata", "link_id"),
               provider_link_id=obj.get("payment_link"),
               amount=from_minor_units(amount, currency) if amount is not None and currency else None,
               currency=currency,
               payer_email=_dig(obj, "customer_details", "email"),
               payer_name=_dig(obj, "customer_details", "name"),
               metadata={"checkout_session_id": obj.get("id"), "payment_status": obj.get("payment_status")},
          )

     if event_type in STRIPE_INTENT_KINDS:
          amount = obj.get("amount_received") or obj.get("amount")
          metadata = {"payment_intent_status": obj.get("status")}
          failure = _dig(obj, "last_payment_error", "message")
          if failure:
               metadata["failure_message"] = failure
          return CanonicalEvent(
               **common,
               kind=STRIPE_INTENT_KINDS[event_type],
               external_ids=_ids(obj.get("id")),
               link_reference=_dig(obj, "metadata", "link_id"),
               amount=from_minor_units(amount, currency) if amount is not None and currency else None,
               currency=currency,
               payer_email=obj.get("receipt_email"),
               metadata=metadata,
          )

     if event_type == "charge.refunded":
          refunds = _dig(obj, "refunds", "data") or []
          refund_id = refunds[0].get("id") if refunds else f"{obj.get('id')}:refund"
          amount = obj.get("amount_refunded")
          return CanonicalEvent(
               **common,
               kind=EventKind.REFUNDED,
               external_ids=_ids(refund_id),
               refunded_external_ids=_ids(obj.get("payment_intent"), obj.get("id")),
               link_reference=_dig(obj, "metadata", "link_id"),
               amount=from_minor_units(amount, currency) if amount is not None and currency else None,
               currency=currency,
               metadata={"charge_id": obj.get("id")},
          )
     return None


# ---------------------------------------------------------------------------
# PayPal
# ---------------------------------------------------------------------------

PAYPAL_CAPTURE_KINDS = {
     "PAYMENT.CAPTURE.COMPLETED": EventKind.SUCCEEDED,
     "PAYMENT.CAPTURE.DENIED": EventKind.FAILED,
     "PAYMENT.CAPTURE.DECLINED": EventKind.FAILED,
     "PAYMENT.CAPTURE.PENDING": EventKind.PENDING,
}


def _paypal_payer_name(payer: Dict[str, Any]) -> Optional[str]:
     name = payer.get("name") or {}
     full = " ".join(part for part in (name.get("given_name"), name.get("surname")) if part)
     return full or None


def parse_paypal_event(payload: Dict[str, Any]) -> Optional[CanonicalEvent]:
     event_type = payload.get("event_type")
     resource = payload.get("resource") or {}
     common = dict(
          provider=PaymentProvider.PAYPAL,
          event_id=payload.get("id"),
          event_type=event_type,
          occurred_at=_timestamp(payload.get("create_time")),
     )

     if event_type == "CHECKOUT.ORDER.APPROVED":
          unit = (resource.get("purchase_units") or [{}])[0]
          payer = resource.get("payer") or {}
          return CanonicalEvent(
               **common,
               kind=EventKind.PENDING,
               external_ids=_ids(resource.get("id")),
               link_reference=unit.get("custom_id"),
               provider_link_id=resource.get("id"),
               amount=_decimal(_dig(unit, "amount", "value")),
               currency=_dig(unit, "amount", "currency_code"),
               payer_email=payer.get("email_address"),
               payer_name=_paypal_payer_name(payer),
               metadata={"order_status": resource.get("status")},
          )

     if event_type in PAYPAL_CAPTURE_KINDS:
          order_id = _dig(resource, "supplementary_data", "related_ids", "order_id")
          return CanonicalEvent(
               **common,
               kind=PAYPAL_CAPTURE_KINDS[event_type],
               # capture id first, the order id keys the row
               external_ids=_ids(resource.get("id"), order_id),
               link_reference=resource.get("custom_id"),
               provider_link_id=order_id,
               amount=_decimal(_dig(resource, "amount", "value")),
               currency=_dig(resource, "amount", "currency_code"),
               metadata={"capture_id": resource.get("id"), "capture_status": resource.get("status")},
          )

     if event_type == "PAYMENT.CAPTURE.REFUNDED":
          up = next((link.get("href") for link in resource.get("links", []) if link.get("rel") == "up"), None)
          capture_id = up.rstrip("/").rsplit("/", 1)[-1] if up else None
          return CanonicalEvent(
               **common,
               kind=EventKind.REFUNDED,
               external_ids=_ids(resource.get("id")),
               refunded_external_ids=_ids(capture_id),
               link_reference=resource.get("custom_id"),
               amount=_decimal(_dig(resource, "amount", "value")),
               currency=_dig(resource, "amount", "currency_code"),
               metadata={"original_capture_id": capture_id},
          )
     return None


# ---------------------------------------------------------------------------
# Square
# ---------------------------------------------------------------------------

SQUARE_PAYMENT_KINDS = {
     "APPROVED": EventKind.PENDING,
     "PENDING": EventKind.PENDING,
     "COMPLETED": EventKind.SUCCEEDED,
     "FAILED": EventKind.FAILED,
     "CANCELED": EventKind.CANCELLED,
}


def parse_square_event(payload: Dict[str, Any]) -> Optional[CanonicalEvent]:
     event_type = payload.get("type")
     common = dict(
          provider=PaymentProvider.SQUARE,
          event_id=payload.get("event_id"),
          event_type=event_type,
          occurred_at=_timestamp(payload.get("created_at")),
     )

     if event_type in ("payment.created", "payment.updated"):
          payment = _dig(payload, "data", "object", "payment") or {}
          kind = SQUARE_PAYMENT_KINDS.get(payment.get("status"))
          if kind is None:
               return None
          currency = _dig(payment, "amount_money", "currency")
          amount = _dig(payment, "amount_money", "amount")
          return CanonicalEvent(
               **common,
               kind=kind,
               external_ids=_ids(payment.get("id"), payment.get("order_id")),
               link_reference=payment.get("note"),
               provider_link_id=payment.get("order_id"),
               amount=from_minor_units(amount, currency) if amount is not None and currency else None,
               currency=currency,
               payer_email=payment.get("buyer_email_address"),
               metadata={"payment_id": payment.get("id"), "square_status": payment.get("status")},
          )

     if event_type in ("refund.created", "refund.updated"):
          refund = _dig(payload, "data", "object", "refund") or {}
          if refund.get("status") != "COMPLETED":
               return None
          currency = _dig(refund, "amount_money", "currency")
          amount = _dig(refund, "amount_money", "amount")
          return CanonicalEvent(
               **common,
               kind=EventKind.REFUNDED,
               external_ids=_ids(refund.get("id")),
               refunded_external_ids=_ids(refund.get("payment_id"), refund.get("order_id")),
               amount=from_minor_units(amount, currency) if amount is not None and currency else None,
               currency=currency,
               metadata={"reason": refund.get("reason")},
          )
     return None


# ---------------------------------------------------------------------------
# PayPay
# ---------------------------------------------------------------------------

PAYPAY_KINDS = {
     "payment.completed": EventKind.SUCCEEDED,
     "payment.failed": EventKind.FAILED,
     "payment.canceled": EventKind.CANCELLED,
     "payment.expired": EventKind.EXPIRED,
     "payment.refunded": EventKind.REFUNDED,
}


def parse_paypay_event(payload: Dict[str, Any]) -> Optional[CanonicalEvent]:
     event_type = payload.get("type") or payload.get("eventType")
     kind = PAYPAY_KINDS.get(event_type)
     if kind is None:
          return None
     data = payload.get("data") or {}
     merchant_payment_id = data.get("merchantPaymentId")
     amount = data.get("amount")
     if isinstance(amount, dict):
          currency = amount.get("currency") or "JPY"
          amount = amount.get("amount")
     else:
          currency = data.get("currency") or "JPY"

     common = dict(
          provider=PaymentProvider.PAYPAY,
          event_id=payload.get("notificationId") or payload.get("id"),
          event_type=event_type,
          kind=kind,
          link_reference=merchant_payment_id,
          amount=from_minor_units(amount, currency) if amount is not None else None,
          currency=currency,
          occurred_at=_timestamp(data.get("acceptedAt") or payload.get("timestamp")),
     )
     if kind == EventKind.REFUNDED:
          return CanonicalEvent(
               **common,
               external_ids=_ids(data.get("merchantRefundId") or data.get("refundId")),
               refunded_external_ids=_ids(data.get("paymentId"), merchant_payment_id),
               metadata={"paypay_refund_id": data.get("refundId")},
          )
     return CanonicalEvent(
          **common,
          external_ids=_ids(data.get("paymentId"), merchant_payment_id),
          provider_link_id=data.get("codeId"),
          metadata={"paypay_status": data.get("status"), "payment_id": data.get("paymentId")},
     )


# ---------------------------------------------------------------------------
# fincode
# ---------------------------------------------------------------------------

FINCODE_KINDS = {
     "payment.captured": EventKind.SUCCEEDED,
     "payment.authorized": EventKind.PENDING,
     "payment.failed": EventKind.FAILED,
     "payment.canceled": EventKind.CANCELLED,
     "payment.refunded": EventKind.REFUNDED,
     "payment.konbini.pending": EventKind.PENDING,
     "konbini.completed": EventKind.SUCCEEDED,
     "konbini.expired": EventKind.EXPIRED,
}


def parse_fincode_event(payload: Dict[str, Any]) -> Optional[CanonicalEvent]:
     event_type = payload.get("event")
     kind = FINCODE_KINDS.get(event_type)
     if kind is None:
          return None
     data = payload.get("data") or {}
     order_id = data.get("id") or data.get("order_id")
     currency = data.get("currency") or "JPY"
     amount = data.get("amount")
     common = dict(
          provider=PaymentProvider.FINCODE,
          event_id=payload.get("event_id"),
          event_type=event_type,
          kind=kind,
          link_reference=data.get("client_field_1"),
          amount=from_minor_units(amount, currency) if amount not in (None, "") else None,
          currency=currency,
          occurred_at=_timestamp(data.get("process_date") or data.get("updated")),
     )
     if kind == EventKind.REFUNDED:
          return CanonicalEvent(
               **common,
               external_ids=_ids(data.get("refund_id") or f"{order_id}:refund"),
               refunded_external_ids=_ids(order_id),
               metadata={"original_order_id": order_id},
          )
     return CanonicalEvent(
          **common,
          external_ids=_ids(order_id),
          provider_link_id=data.get("session_id"),
          payer_email=data.get("customer_email"),
          metadata={"pay_type": data.get("pay_type"), "fincode_status": data.get("status")},
     )


PARSERS: Dict[PaymentProvider, Callable[[Dict[str, Any]], Optional[CanonicalEvent]]] = {
     PaymentProvider.STRIPE: parse_stripe_event,
     PaymentProvider.PAYPAL: parse_paypal_event,
     PaymentProvider.SQUARE: parse_square_event,
     PaymentProvider.PAYPAY: parse_paypay_event,
     PaymentProvider.FINCODE: parse_fincode_event,
}


def parse_event(provider: PaymentProvider, payload: Any) -> Optional[CanonicalEvent]:
     """
     Parse a verified, JSON-decoded webhook payload.

     Returns:
          CanonicalEvent, or None when the event type carries no payment state

     Raises:
          ValidationError: recognised event type with missing or malformed data
     """
     if not isinstance(payload, dict):
          raise ValidationError("Webhook payload must be a JSON object")
     try:
          event = PARSERS[PaymentProvider(provider)](payload)
     except (PydanticValidationError, InvalidOperation, AttributeError, TypeError) as e:
          logger.warning("webhook_event_malformed", provider=provider.value, error=str(e))
          raise ValidationError(f"Malformed {provider.value} event") from e
     if event is None:
          logger.info("webhook_event_ignored", provider=provider.value, event_type=_event_type(payload))
     return event


def _event_type(payload: Dict[str, Any]) -> Optional[str]:
     return payload.get("type") or payload.get("event_type") or payload.get("event") or payload.get("eventType")
