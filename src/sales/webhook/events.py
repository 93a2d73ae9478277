"""Typed payment-provider events.

A verified webhook body is decoded exactly once into one of the models
below; everything downstream works with typed fields instead of digging
through the provider's nested JSON. Event types this context does not
handle decode to ``UnknownEvent``.
"""

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from sales.errors import MalformedEventError


class ProviderEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    event_type: str
    created: int


class CheckoutCompleted(ProviderEventBase):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session_id: str
    order_id: str | None = None
    payment_status: str | None = None
    payment_intent_id: str | None = None
    customer_id: str | None = None
    customer_email: str | None = None
    amount_shipping: int | None = None
    shipping_rate_id: str | None = None
    shipping_method: str | None = None
    shipping_carrier: str | None = None
    guest_session_id: str | None = None


class CheckoutExpired(ProviderEventBase):
    kind: Literal["checkout_expired"] = "checkout_expired"
    session_id: str
    order_id: str | None = None


class PaymentSucceeded(ProviderEventBase):
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    payment_intent_id: str
    order_id: str | None = None
    customer_id: str | None = None


class PaymentFailed(ProviderEventBase):
    kind: Literal["payment_failed"] = "payment_failed"
    payment_intent_id: str
    order_id: str | None = None
    amount_received: int = 0
    failure_code: str | None = None
    decline_code: str | None = None
    failure_message: str | None = None


class PaymentCanceled(ProviderEventBase):
    kind: Literal["payment_canceled"] = "payment_canceled"
    payment_intent_id: str
    order_id: str | None = None
    status: str | None = None
    amount_received: int = 0
    cancellation_reason: str | None = None


class ProviderRefund(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    amount: int = 0
    currency: str | None = None
    status: str | None = None
    reason: str | None = None
    refund_id: str | None = None  # Local Refund id carried in metadata


class ChargeRefunded(ProviderEventBase):
    kind: Literal["charge_refunded"] = "charge_refunded"
    charge_id: str
    payment_intent_id: str | None = None
    amount_refunded: int = 0
    currency: str | None = None
    refunds: tuple[ProviderRefund, ...] = ()


class AsyncPaymentSucceeded(CheckoutCompleted):
    """A delayed payment method (bank transfer, SEPA debit) settled after checkout."""

    kind: Literal["async_payment_succeeded"] = "async_payment_succeeded"


class AsyncPaymentFailed(ProviderEventBase):
    kind: Literal["async_payment_failed"] = "async_payment_failed"
    session_id: str
    order_id: str | None = None
    payment_intent_id: str | None = None


class RefundUpdated(ProviderEventBase):
    """refund.created, refund.updated and refund.failed all carry the refund itself."""

    kind: Literal["refund_updated"] = "refund_updated"
    provider_refund_id: str
    refund_id: str | None = None
    payment_intent_id: str | None = None
    amount: int = 0
    status: str | None = None
    failure_reason: str | None = None


class DisputeCreated(ProviderEventBase):
    kind: Literal["dispute_created"] = "dispute_created"
    dispute_id: str
    payment_intent_id: str | None = None
    amount: int = 0
    reason: str | None = None
    status: str | None = None
    due_by: int | None = None  # Unix seconds


class DisputeClosed(DisputeCreated):
    kind: Literal["dispute_closed"] = "dispute_closed"


class UnknownEvent(ProviderEventBase):
    kind: Literal["unknown"] = "unknown"


ProviderEvent = Union[
    CheckoutCompleted,
    CheckoutExpired,
    PaymentSucceeded,
    PaymentFailed,
    PaymentCanceled,
    ChargeRefunded,
    AsyncPaymentSucceeded,
    AsyncPaymentFailed,
    RefundUpdated,
    DisputeCreated,
    DisputeClosed,
    UnknownEvent,
]


def _ref(value):
    """Expanded references arrive as objects, plain ones as id strings."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _order_id(obj: dict, fallback=None):
    metadata = obj.get("metadata") or {}
    return metadata.get("order_id") or metadata.get("orderId") or fallback


def _checkout_completed(obj: dict) -> dict:
    metadata = obj.get("metadata") or {}
    customer_details = obj.get("customer_details") or {}
    shipping_rate = (obj.get("shipping_cost") or {}).get("shipping_rate")
    rate = shipping_rate if isinstance(shipping_rate, dict) else {}
    return {
        "session_id": obj["id"],
        "order_id": _order_id(obj, fallback=obj.get("client_reference_id")),
        "payment_status": obj.get("payment_status"),
        "payment_intent_id": _ref(obj.get("payment_intent")),
        "customer_id": _ref(obj.get("customer")),
        "customer_email": obj.get("customer_email") or customer_details.get("email"),
        "amount_shipping": (obj.get("total_details") or {}).get("amount_shipping"),
        "shipping_rate_id": _ref(shipping_rate),
        "shipping_method": rate.get("display_name"),
        "shipping_carrier": (rate.get("metadata") or {}).get("carrier"),
        "guest_session_id": metadata.get("guest_session_id") or metadata.get("guestSessionId"),
    }


def _checkout_expired(obj: dict) -> dict:
    return {"session_id": obj["id"], "order_id": _order_id(obj, fallback=obj.get("client_reference_id"))}


def _payment_succeeded(obj: dict) -> dict:
    return {"payment_intent_id": obj["id"], "order_id": _order_id(obj), "customer_id": _ref(obj.get("customer"))}


def _payment_failed(obj: dict) -> dict:
    error = obj.get("last_payment_error") or {}
    return {
        "payment_intent_id": obj["id"],
        "order_id": _order_id(obj),
        "amount_received": obj.get("amount_received") or 0,
        "failure_code": error.get("code"),
        "decline_code": error.get("decline_code"),
        "failure_message": error.get("message"),
    }


def _payment_canceled(obj: dict) -> dict:
    return {
        "payment_intent_id": obj["id"],
        "order_id": _order_id(obj),
        "status": obj.get("status"),
        "amount_received": obj.get("amount_received") or 0,
        "cancellation_reason": obj.get("cancellation_reason"),
    }


def _charge_refunded(obj: dict) -> dict:
    refunds = [
        {
            "id": refund["id"],
            "amount": refund.get("amount") or 0,
            "currency": refund.get("currency"),
            "status": refund.get("status"),
            "reason": refund.get("reason"),
            "refund_id": (refund.get("metadata") or {}).get("refund_id"),
        }
        for refund in ((obj.get("refunds") or {}).get("data") or [])
    ]
    return {
        "charge_id": obj["id"],
        "payment_intent_id": _ref(obj.get("payment_intent")),
        "amount_refunded": obj.get("amount_refunded") or 0,
        "currency": obj.get("currency"),
        "refunds": refunds,
    }


def _async_payment_failed(obj: dict) -> dict:
    return {
        "session_id": obj["id"],
        "order_id": _order_id(obj, fallback=obj.get("client_reference_id")),
        "payment_intent_id": _ref(obj.get("payment_intent")),
    }


def _refund(obj: dict) -> dict:
    return {
        "provider_refund_id": obj["id"],
        "refund_id": (obj.get("metadata") or {}).get("refund_id"),
        "payment_intent_id": _ref(obj.get("payment_intent")),
        "amount": obj.get("amount") or 0,
        "status": obj.get("status"),
        "failure_reason": obj.get("failure_reason"),
    }


def _refund_failed(obj: dict) -> dict:
    return {**_refund(obj), "status": "failed"}


def _dispute(obj: dict) -> dict:
    return {
        "dispute_id": obj["id"],
        "payment_intent_id": _ref(obj.get("payment_intent")),
        "amount": obj.get("amount") or 0,
        "reason": obj.get("reason"),
        "status": obj.get("status"),
        "due_by": (obj.get("evidence_details") or {}).get("due_by"),
    }


_DECODERS = {
    "checkout.session.completed": (CheckoutCompleted, _checkout_completed),
    "checkout.session.expired": (CheckoutExpired, _checkout_expired),
    "payment_intent.succeeded": (PaymentSucceeded, _payment_succeeded),
    "payment_intent.payment_failed": (PaymentFailed, _payment_failed),
    "payment_intent.canceled": (PaymentCanceled, _payment_canceled),
    "charge.refunded": (ChargeRefunded, _charge_refunded),
    "checkout.session.async_payment_succeeded": (AsyncPaymentSucceeded, _checkout_completed),
    "checkout.session.async_payment_failed": (AsyncPaymentFailed, _async_payment_failed),
    "refund.created": (RefundUpdated, _refund),
    "refund.updated": (RefundUpdated, _refund),
    "refund.failed": (RefundUpdated, _refund_failed),
    "charge.dispute.created": (DisputeCreated, _dispute),
    "charge.dispute.closed": (DisputeClosed, _dispute),
}


def decode_event(raw: dict) -> ProviderEvent:
    """Turn a verified provider event into its typed model."""
    try:
        envelope = {"event_id": raw["id"], "event_type": raw["type"], "created": raw["created"]}
    except (KeyError, TypeError) as exc:
        raise MalformedEventError(f"Event envelope is missing {exc}") from exc

    decoder = _DECODERS.get(envelope["event_type"])
    try:
        if decoder is None:
            return UnknownEvent(**envelope)
        model, extract = decoder
        return model(**envelope, **extract(raw["data"]["object"]))
    except (KeyError, TypeError, AttributeError) as exc:
        raise MalformedEventError(f"{envelope['event_type']} payload is missing {exc}") from exc
    except ValidationError as exc:
        raise MalformedEventError(f"{envelope['event_type']} payload is invalid: {exc}") from exc
