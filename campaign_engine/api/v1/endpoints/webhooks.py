"""
Webhooks API Endpoints
Receives call lifecycle webhooks from the telephony provider
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from campaign_engine.api.v1.dependencies import get_webhook_service
from campaign_engine.domain.services.webhook_ingestion import WebhookIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/voice")
async def voice_webhook(
    request: Request,
    service: WebhookIngestionService = Depends(get_webhook_service)
):
    """
    Handle a voice provider webhook.

    The signature covers the raw body, so the body is read as bytes and
    parsed by the service after verification.

    Responses:
    - 200 {"status": "success" | "duplicate" | "skipped"}
    - 400 malformed or stale delivery
    - 401 bad or missing signature
    - 500 processing failed; the provider should retry
    """
    try:
        raw_body = await request.body()
        result = await service.handle(raw_body, request.headers)
        return JSONResponse(status_code=result.status_code, content=result.body)
    except Exception as e:
        logger.error(f"Unhandled error in voice webhook: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"status": "error"})
