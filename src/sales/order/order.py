"""Order aggregate (CQRS) — the central aggregate of the sales domain.

Orders are created at checkout initiation (outside this context) with their
stock already reserved. From then on they are mutated exclusively by
payment-provider webhook transitions.

Two independent state fields:
    status:         PENDING → PROCESSING → SHIPPED → DELIVERED
                    PENDING/PROCESSING → CANCELLED
                    CANCELLED → PROCESSING (late success)
    payment_status: PENDING → PAID | FAILED
                    PAID → FAILED (compensated by an automatic refund)
                    FAILED → PAID (late success after a failure or expiry)
                    PAID | FAILED → REFUNDED (terminal)

All money fields are integers in minor currency units.
"""

from collections import defaultdict
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String, Text, ValueObject

from sales.domain import sales
from sales.order.events import OrderFlaggedForReview, OrderPaid, OrderPaymentFailed, OrderRefunded


class OrderStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


_VALID_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.FAILED, PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: {PaymentStatus.PAID, PaymentStatus.REFUNDED},  # A late success revives the order
    PaymentStatus.REFUNDED: set(),  # Terminal
}


@sales.value_object(part_of="Order")
class ShippingAddress:
    """Delivery address snapshot taken when the order was placed."""

    first_name = String(max_length=100)
    last_name = String(max_length=100)
    address_line1 = String(required=True, max_length=255)
    address_line2 = String(max_length=255)
    postal_code = String(required=True, max_length=20)
    city = String(required=True, max_length=100)
    country = String(required=True, max_length=2)
    phone = String(max_length=30)


@sales.entity(part_of="Order")
class OrderItem:
    """A line of the order. Title and attributes are frozen at checkout time."""

    product_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    sku = String(max_length=100)
    title = String(required=True, max_length=255)
    color = String(max_length=100)
    material = String(max_length=100)
    size = String(max_length=50)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)


@sales.entity(part_of="Order")
class OrderNote:
    content = Text(required=True)
    author = String(max_length=100, default="system")
    created_at = DateTime()


@sales.aggregate
class Order:
    order_number = String(required=True, max_length=50)
    user_id = Identifier()  # Nullable for guest checkouts
    customer_email = String(max_length=255)
    customer_name = String(max_length=255)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    items = HasMany(OrderItem)
    notes = HasMany(OrderNote)

    subtotal = Integer(default=0, min_value=0)
    discount_amount = Integer(default=0, min_value=0)
    shipping_cost = Integer(default=0, min_value=0)
    tax_amount = Integer(default=0, min_value=0)
    total = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="EUR")

    shipping_address = ValueObject(ShippingAddress)
    shipping_method = String(max_length=100)
    shipping_carrier = String(max_length=100)

    # Payment-provider correlation
    payment_intent_id = String(max_length=255)
    checkout_session_id = String(max_length=255)
    provider_customer_id = String(max_length=255)

    payment_failure_code = String(max_length=100)
    payment_decline_code = String(max_length=100)
    payment_failure_message = String(max_length=500)

    paid_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def paid_orders_must_record_payment_time(self):
        if self.payment_status == PaymentStatus.PAID.value and self.paid_at is None:
            raise ValidationError({"paid_at": ["A paid order must record when it was paid"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number,
        items,
        total,
        customer_email=None,
        customer_name=None,
        user_id=None,
        subtotal=None,
        discount_amount=0,
        shipping_cost=0,
        tax_amount=0,
        currency="EUR",
        shipping_address=None,
        checkout_session_id=None,
    ):
        """Create a pending order from checkout data.

        Args:
            items: List of dicts with product_id, variant_id, title, quantity,
                unit_price and optional sku/color/material/size.
        """
        if not items:
            raise ValidationError({"items": ["An order needs at least one item"]})

        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            user_id=user_id,
            customer_email=customer_email,
            customer_name=customer_name,
            subtotal=subtotal if subtotal is not None else sum(i["quantity"] * i["unit_price"] for i in items),
            discount_amount=discount_amount,
            shipping_cost=shipping_cost,
            tax_amount=tax_amount,
            total=total,
            currency=currency,
            shipping_address=shipping_address,
            checkout_session_id=checkout_session_id,
            created_at=now,
            updated_at=now,
        )
        for item in items:
            order.add_items(OrderItem(**item))
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def quantities_by_variant(self) -> dict[str, int]:
        """Total ordered quantity per variant, merging repeated lines."""
        quantities = defaultdict(int)
        for item in self.items:
            quantities[str(item.variant_id)] += item.quantity
        return dict(quantities)

    def is_fully_refunded_by(self, amount_refunded: int) -> bool:
        return amount_refunded >= self.total

    # -------------------------------------------------------------------
    # Payment lifecycle
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: PaymentStatus) -> None:
        current = PaymentStatus(self.payment_status)
        if target not in _VALID_PAYMENT_TRANSITIONS.get(current, set()):
            raise ValidationError(
                {"payment_status": [f"Cannot transition from {current.value} to {target.value}"]}
            )

    def mark_paid(
        self,
        payment_intent_id=None,
        checkout_session_id=None,
        provider_customer_id=None,
        shipping_cost=None,
        shipping_method=None,
        shipping_carrier=None,
    ):
        """Record confirmed payment and move the order into fulfilment.

        A payment confirmed after the order was cancelled for a failed or
        expired payment reopens it. The caller is responsible for taking the
        released stock back first.
        """
        self._assert_can_transition(PaymentStatus.PAID)
        now = datetime.now(UTC)
        reopened = self.payment_status == PaymentStatus.FAILED.value

        self.paid_at = now
        self.payment_status = PaymentStatus.PAID.value
        if OrderStatus(self.status) in (OrderStatus.PENDING, OrderStatus.CANCELLED):
            self.status = OrderStatus.PROCESSING.value
        if reopened:
            self.cancelled_at = None
            self.payment_failure_code = None
            self.payment_decline_code = None
            self.payment_failure_message = None
        self.updated_at = now

        if payment_intent_id:
            self.payment_intent_id = payment_intent_id
        if checkout_session_id:
            self.checkout_session_id = checkout_session_id
        if provider_customer_id:
            self.provider_customer_id = provider_customer_id
        if shipping_cost is not None:
            self.shipping_cost = shipping_cost
        if shipping_method:
            self.shipping_method = shipping_method
        if shipping_carrier:
            self.shipping_carrier = shipping_carrier

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                order_number=self.order_number,
                payment_intent_id=self.payment_intent_id,
                checkout_session_id=self.checkout_session_id,
                total=self.total,
                shipping_cost=self.shipping_cost,
                paid_at=now,
                reopened=reopened,
            )
        )

    def cancel_for_payment(
        self,
        reason,
        payment_intent_id=None,
        failure_code=None,
        decline_code=None,
        failure_message=None,
    ):
        """Cancel the order because its payment did not go through.

        ``reason`` is one of payment_failed, payment_canceled, checkout_expired
        or async_payment_failed.
        """
        previous = self.payment_status
        self._assert_can_transition(PaymentStatus.FAILED)
        now = datetime.now(UTC)

        self.payment_status = PaymentStatus.FAILED.value
        self.status = OrderStatus.CANCELLED.value
        self.cancelled_at = now
        self.updated_at = now

        if payment_intent_id:
            self.payment_intent_id = payment_intent_id
        self.payment_failure_code = failure_code
        self.payment_decline_code = decline_code
        self.payment_failure_message = failure_message

        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                order_number=self.order_number,
                reason=reason,
                previous_payment_status=previous,
                failure_code=failure_code,
                failure_message=failure_message,
                cancelled_at=now,
            )
        )

    def mark_refunded(self, amount_refunded):
        self._assert_can_transition(PaymentStatus.REFUNDED)
        now = datetime.now(UTC)

        self.payment_status = PaymentStatus.REFUNDED.value
        self.refunded_at = now
        self.updated_at = now

        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                order_number=self.order_number,
                amount_refunded=amount_refunded,
                refunded_at=now,
            )
        )

    def add_note(self, content, author="system"):
        self.add_notes(OrderNote(content=content, author=author, created_at=datetime.now(UTC)))
        self.updated_at = datetime.now(UTC)
        self.raise_(OrderFlaggedForReview(order_id=str(self.id), note=content))

    def has_note(self, prefix) -> bool:
        return any(note.content.startswith(prefix) for note in self.notes)

    def flag_email_mismatch(self, provider_email):
        """Attach an anti-fraud note when the payer's email differs from the order's."""
        if not provider_email or not self.customer_email:
            return False
        if provider_email.strip().lower() == self.customer_email.strip().lower():
            return False

        self.add_note(
            f"EMAIL MISMATCH: the payment provider reported {provider_email} "
            f"but the order was placed with {self.customer_email}. Verify before shipping."
        )
        return True


@sales.repository(part_of=Order)
class OrderRepository:
    def find_by_payment_intent(self, payment_intent_id: str) -> Order | None:
        """Find the order correlated with a provider payment intent."""
        results = self._dao.query.filter(payment_intent_id=payment_intent_id).all().items
        return results[0] if results else None
