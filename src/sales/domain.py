"""Sales bounded context — Orders, Stock and Payment Reconciliation.

Consumes payment-provider webhook events and reconciles them against
locally held orders, product variant inventory, shopping carts and
refund records. Orders, variants and carts are standard CQRS aggregates;
each webhook transition runs as a command inside a single Unit of Work.
"""

import structlog
from protean.domain import Domain

sales = Domain(name="sales")

logger = structlog.get_logger(__name__)
