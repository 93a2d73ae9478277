"""Domain events for the ProductVariant aggregate."""

from protean.fields import Identifier, Integer, String

from sales.domain import sales


@sales.event(part_of="ProductVariant")
class StockAdjusted:
    """Variant inventory moved by ``delta``; previous and new counts kept for audit."""

    __version__ = "v1"

    variant_id = Identifier(required=True)
    product_id = Identifier(required=True)
    delta = Integer(required=True)
    previous_inventory = Integer(required=True)
    new_inventory = Integer(required=True)
    reason = String(max_length=255)
    order_id = Identifier()


@sales.event(part_of="ProductVariant")
class VariantDelisted:
    """The variant ran out of stock and was taken off sale."""

    __version__ = "v1"

    variant_id = Identifier(required=True)
    product_id = Identifier(required=True)
    sku = String()
