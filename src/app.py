"""Storefront sales FastAPI application.

Receives payment-provider webhooks and reconciles them against orders,
stock, carts and refunds.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# Initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay from src/sales/domain.toml.
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sales.domain import sales
from sales.utils.logging import configure_logging

configure_logging()
sales.init()

app = FastAPI(
    title="Storefront Sales API",
    description="Payment webhook reconciliation for orders, stock and refunds",
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the sales domain context for each request."""
    if request.url.path.startswith("/webhooks"):
        with sales.domain_context():
            return await call_next(request)
    # Health check, docs
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from sales.api.routes import webhook_router  # noqa: E402

app.include_router(webhook_router)


@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": sales.name})
