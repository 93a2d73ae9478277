"""Pydantic response schemas for the webhook endpoint."""

from pydantic import BaseModel


class WebhookAckResponse(BaseModel):
    received: bool
    status: str  # processed, duplicate, ignored

    model_config = {"json_schema_extra": {"examples": [{"received": True, "status": "processed"}]}}


class WebhookErrorResponse(BaseModel):
    error: str
