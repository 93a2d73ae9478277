"""ProductVariant aggregate (CQRS) — a sellable SKU and its stock counter.

The inventory counter never goes negative. Reaching exactly zero through an
order delists the variant; increments never relist it (relisting is an
admin decision).
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String

from sales.domain import sales
from sales.inventory.events import StockAdjusted, VariantDelisted


@sales.aggregate
class ProductVariant:
    product_id = Identifier(required=True)
    sku = String(required=True, max_length=100)
    inventory = Integer(default=0, min_value=0)
    is_active = Boolean(default=True)
    updated_at = DateTime()

    def adjust_inventory(self, delta, reason=None, order_id=None):
        """Move the stock counter by ``delta`` units (negative to reserve)."""
        previous = self.inventory
        new = previous + delta
        if new < 0:
            raise ValidationError(
                {"inventory": [f"Cannot adjust {self.sku} by {delta}: only {previous} in stock"]}
            )

        self.inventory = new
        self.updated_at = datetime.now(UTC)

        self.raise_(
            StockAdjusted(
                variant_id=str(self.id),
                product_id=str(self.product_id),
                delta=delta,
                previous_inventory=previous,
                new_inventory=new,
                reason=reason,
                order_id=order_id,
            )
        )
        return previous, new

    def deactivate(self):
        if not self.is_active:
            return
        self.is_active = False
        self.updated_at = datetime.now(UTC)
        self.raise_(
            VariantDelisted(
                variant_id=str(self.id),
                product_id=str(self.product_id),
                sku=self.sku,
            )
        )

    @property
    def is_depleted(self) -> bool:
        return self.inventory == 0
