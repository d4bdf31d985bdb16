"""Provider webhook endpoint."""

from typing import Annotated

from fastapi import APIRouter, Header, Request

from app.api.deps import Container
from app.schemas.webhook import WebhookAck

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/provider", response_model=WebhookAck)
async def provider_webhook(
    request: Request,
    container: Container,
    x_paystack_signature: Annotated[str | None, Header()] = None,
):
    """
    Receive a signed provider event.

    The signature is checked against the raw body before anything is parsed.
    Replayed events are acknowledged without changing any balance.
    """
    raw_body = await request.body()
    outcome = await container.webhooks.ingest(raw_body, x_paystack_signature)
    return WebhookAck(outcome=outcome)
