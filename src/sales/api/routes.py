"""FastAPI routes for the Sales domain — payment-provider webhooks."""

from fastapi import APIRouter, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from sales.api.schemas import WebhookAckResponse, WebhookErrorResponse
from sales.webhook.dispatcher import get_dispatcher

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post(
    "/stripe",
    response_model=WebhookAckResponse,
    responses={400: {"model": WebhookErrorResponse}, 500: {"model": WebhookErrorResponse}},
)
async def stripe_webhook(request: Request, stripe_signature: str | None = Header(default=None)):
    """Receive a Stripe event. The raw body is needed to check the signature."""
    body = await request.body()
    # The dispatcher runs blocking Units of Work and provider calls
    ack = await run_in_threadpool(get_dispatcher().handle, body, stripe_signature)
    return JSONResponse(status_code=ack.status_code, content=ack.body)
