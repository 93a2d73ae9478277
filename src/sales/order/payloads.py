"""Notification payloads built from an order snapshot."""

from sales.order.order import Order


def _customer_name(order: Order) -> str:
    address = order.shipping_address
    if address and (address.first_name or address.last_name):
        return " ".join(part for part in (address.first_name, address.last_name) if part)
    return order.customer_name or "Customer"


def _address(order: Order) -> dict | None:
    address = order.shipping_address
    if address is None:
        return None
    return {
        "first_name": address.first_name,
        "last_name": address.last_name,
        "address_line1": address.address_line1,
        "address_line2": address.address_line2,
        "postal_code": address.postal_code,
        "city": address.city,
        "country": address.country,
        "phone": address.phone,
    }


def _items(order: Order) -> list[dict]:
    return [
        {
            "title": item.title,
            "sku": item.sku,
            "color": item.color,
            "material": item.material,
            "size": item.size,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
        }
        for item in order.items
    ]


def order_confirmation(order: Order, base_url: str, recipient: str | None = None) -> dict:
    base_url = base_url.rstrip("/")
    return {
        "to": recipient or order.customer_email,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_name": _customer_name(order),
        "items": _items(order),
        "subtotal": order.subtotal,
        "discount": order.discount_amount,
        "shipping": order.shipping_cost,
        "tax": order.tax_amount,
        "total": order.total,
        "currency": order.currency,
        "shipping_address": _address(order),
        "shipping_method": order.shipping_method,
        "tracking_url": f"{base_url}/account/orders/{order.order_number}",
    }


def admin_new_order(order: Order, dashboard_url: str) -> dict:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_name": _customer_name(order),
        "customer_email": order.customer_email,
        "items": _items(order),
        "total": order.total,
        "currency": order.currency,
        "shipping_address": _address(order),
        "payment_intent_id": order.payment_intent_id,
        "dashboard_url": f"{dashboard_url}/{order.id}",
    }


def refund_confirmation(order: Order, amount_refunded: int, currency: str) -> dict:
    return {
        "to": order.customer_email,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_name": _customer_name(order),
        "amount": amount_refunded,
        "currency": currency,
        "is_partial": not order.is_fully_refunded_by(amount_refunded),
    }


def payment_failed(order: Order, base_url: str) -> dict:
    return {
        "to": order.customer_email,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_name": _customer_name(order),
        "retry_url": f"{base_url.rstrip('/')}/shop",
    }


def admin_refund_failed(order: Order, refund, failure_reason: str | None, dashboard_url: str) -> dict:
    return {
        "order_number": order.order_number,
        "order_id": str(order.id),
        "customer_email": order.customer_email,
        "amount": refund.amount,
        "currency": refund.currency,
        "reason": "other",
        "error_message": f"Provider refund failed: {failure_reason or 'unknown reason'}",
        "payment_intent_id": order.payment_intent_id,
        "dashboard_url": f"{dashboard_url}/{order.id}",
    }


def admin_dispute(order: Order, dispute_id: str, amount: int, reason: str, dashboard_url: str, due_by=None) -> dict:
    return {
        "order_number": order.order_number,
        "order_id": str(order.id),
        "customer_email": order.customer_email,
        "amount": amount,
        "currency": order.currency,
        "reason": reason,
        "dispute_id": dispute_id,
        "deadline": due_by.date().isoformat() if due_by else None,
        "dashboard_url": f"{dashboard_url}/{order.id}",
        "provider_dashboard_url": f"https://dashboard.stripe.com/disputes/{dispute_id}",
    }
