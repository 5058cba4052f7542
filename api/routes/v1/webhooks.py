"""
api/routes/v1/webhooks.py -- Inbound sales webhook.

Routes:
  POST /api/v1/webhooks/sales -- record units sold against local products

Not authenticated by principal. The sender signs the raw request body:
  X-Signature-SHA256: base64(HMAC-SHA256(WEBHOOK_SECRET, body))
The signature is checked in constant time before the body is parsed. With
WEBHOOK_SECRET unset the endpoint answers 503.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from api.models import SaleEvent, SaleWebhookResponse
from auth.tokens import verify_hmac_signature
from core.config import get_settings

logger = logging.getLogger("permgate.api")

router = APIRouter()

SIGNATURE_HEADER = "X-Signature-SHA256"


@router.post("/webhooks/sales", response_model=SaleWebhookResponse)
async def sales_webhook(request: Request) -> SaleWebhookResponse:
    secret = get_settings().webhook_secret
    if not secret:
        raise HTTPException(
            status_code=503,
            detail={"code": "webhook_disabled", "message": "Webhook is not configured."},
        )

    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not signature or not verify_hmac_signature(secret, body, signature):
        logger.warning(
            "Rejected sales webhook with bad signature from %s",
            request.client.host if request.client else "?",
        )
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_signature", "message": "Invalid webhook signature."},
        )

    try:
        event = SaleEvent.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Invalid sale event payload."},
        ) from exc

    catalog = request.app.state.catalog
    updated = 0
    for line in event.line_items:
        if catalog.record_sale(str(line.product_id), line.quantity):
            updated += 1

    logger.info("Sale %s recorded: %d of %d line item(s) matched", event.id, updated, len(event.line_items))
    return SaleWebhookResponse(message="Sale recorded.", updated=updated)
