"""Stock ledger operations used by webhook transitions.

These helpers run inside a command handler's Unit of Work: variants are
loaded and validated first, then mutated, and are only persisted when the
caller adds them back to the repository.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from sales.errors import VariantUnavailableError
from sales.inventory.variant import ProductVariant

logger = structlog.get_logger(__name__)


def load_variants(variant_ids) -> dict[str, ProductVariant]:
    """Load every variant by id. A missing variant raises ObjectNotFoundError."""
    repo = current_domain.repository_for(ProductVariant)
    return {variant_id: repo.get(variant_id) for variant_id in variant_ids}


def revalidate(quantities: dict[str, int]) -> dict[str, ProductVariant]:
    """Check that every reserved variant still exists, is on sale and is not oversold.

    Stock was already taken at checkout initiation, so a consistent variant
    has a non-negative counter and is either active or delisted only because
    it sold out.
    """
    repo = current_domain.repository_for(ProductVariant)
    problems = {}
    variants = {}
    for variant_id in quantities:
        try:
            variant = repo.get(variant_id)
        except ObjectNotFoundError:
            problems[variant_id] = ["Variant no longer exists"]
            continue

        # A variant delisted because it sold out still honours reservations taken before
        if not variant.is_active and not variant.is_depleted:
            problems[variant_id] = ["Variant is no longer on sale"]
        elif variant.inventory < 0:
            problems[variant_id] = [f"Variant is oversold ({variant.inventory} in stock)"]
        else:
            variants[variant_id] = variant

    if problems:
        raise VariantUnavailableError(problems)
    return variants


def retake(quantities: dict[str, int], reason, order_id) -> dict[str, ProductVariant]:
    """Reserve again the quantities a cancelled order gave back.

    Every variant is checked before the first decrement. A variant that
    vanished or no longer holds enough units raises VariantUnavailableError,
    and the whole transition rolls back.
    """
    repo = current_domain.repository_for(ProductVariant)
    problems = {}
    variants = {}
    for variant_id, quantity in quantities.items():
        try:
            variant = repo.get(variant_id)
        except ObjectNotFoundError:
            problems[variant_id] = ["Variant no longer exists"]
            continue

        if variant.inventory < quantity:
            problems[variant_id] = [f"Only {variant.inventory} in stock, {quantity} needed to reopen the order"]
        else:
            variants[variant_id] = variant

    if problems:
        raise VariantUnavailableError(problems)

    for variant_id, quantity in quantities.items():
        previous, new = variants[variant_id].adjust_inventory(-quantity, reason=reason, order_id=order_id)
        logger.info(
            "Stock taken back",
            order_id=order_id,
            variant_id=variant_id,
            quantity=quantity,
            previous_inventory=previous,
            new_inventory=new,
        )
    return variants


def delist_depleted(variants: dict[str, ProductVariant]) -> list[ProductVariant]:
    """Deactivate every variant whose counter sits at exactly zero."""
    delisted = []
    for variant in variants.values():
        if variant.is_depleted and variant.is_active:
            variant.deactivate()
            delisted.append(variant)
            logger.info("Variant delisted after selling out", variant_id=str(variant.id), sku=variant.sku)
    return delisted


def restore(variants: dict[str, ProductVariant], quantities: dict[str, int], reason, order_id) -> list[dict]:
    """Give reserved quantities back to their variants.

    Returns one audit record per variant with the inventory before and after.
    Restoration never relists a variant.
    """
    restored = []
    for variant_id, quantity in quantities.items():
        variant = variants[variant_id]
        previous, new = variant.adjust_inventory(quantity, reason=reason, order_id=order_id)
        restored.append(
            {
                "variant_id": variant_id,
                "product_id": str(variant.product_id),
                "sku": variant.sku,
                "quantity": quantity,
                "previous_inventory": previous,
                "new_inventory": new,
            }
        )
        logger.info(
            "Stock restored",
            order_id=order_id,
            variant_id=variant_id,
            quantity=quantity,
            previous_inventory=previous,
            new_inventory=new,
            reason=reason,
        )
    return restored


def persist(variants) -> None:
    repo = current_domain.repository_for(ProductVariant)
    for variant in variants:
        repo.add(variant)
