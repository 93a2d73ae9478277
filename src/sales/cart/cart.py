"""Shopping cart aggregate (CQRS).

Only the parts the payment flow needs live here: a cart belongs either to a
registered user or to a guest session, and is emptied once its owner's order
is paid.
"""

from datetime import UTC, datetime

from protean.fields import DateTime, HasMany, Identifier, Integer, String

from sales.domain import sales


@sales.entity(part_of="Cart")
class CartItem:
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    added_at = DateTime()


@sales.aggregate
class Cart:
    user_id = Identifier()  # Nullable for guest carts
    session_id = String(max_length=255)
    items = HasMany(CartItem)
    updated_at = DateTime()

    @classmethod
    def create(cls, user_id=None, session_id=None):
        return cls(user_id=user_id, session_id=session_id, updated_at=datetime.now(UTC))

    def add_item(self, variant_id, quantity):
        self.add_items(CartItem(variant_id=variant_id, quantity=quantity, added_at=datetime.now(UTC)))
        self.updated_at = datetime.now(UTC)

    def clear(self) -> int:
        """Remove every item. Returns how many lines were removed."""
        items = list(self.items)
        for item in items:
            self.remove_items(item)
        self.updated_at = datetime.now(UTC)
        return len(items)


@sales.repository(part_of=Cart)
class CartRepository:
    def for_user(self, user_id) -> list[Cart]:
        return self._dao.query.filter(user_id=str(user_id)).all().items

    def for_session(self, session_id) -> list[Cart]:
        return self._dao.query.filter(session_id=session_id).all().items
