"""Cache tag names shared with the storefront's revalidation layer."""

ORDERS_LIST = "orders-list"
ADMIN_BADGES = "admin-badges"
DASHBOARD_KPIS = "dashboard-kpis"
REFUNDS_LIST = "refunds-list"


def cart_tags(user_id=None, session_id=None) -> list[str]:
    if user_id:
        return [f"cart-{user_id}", f"cart-count-{user_id}"]
    if session_id:
        return [f"cart-session-{session_id}", f"cart-count-session-{session_id}"]
    return []


def user_orders(user_id) -> str:
    return f"user-orders-{user_id}"


def order_detail(order_id) -> str:
    return f"order-{order_id}"


def order_notes(order_id) -> str:
    return f"order-notes-{order_id}"


def sku_stock(variant_id) -> str:
    return f"sku-stock-{variant_id}"


def product(product_id) -> str:
    return f"product-{product_id}"
