"""Sales bounded context: payment-event reconciliation for the storefront."""
