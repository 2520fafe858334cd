"""Telegram webhook receiver (webhook mode only)."""

from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from eventgate.channels.telegram import TelegramApprovalChannel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


def _get_channel() -> TelegramApprovalChannel:
    """Dependency stub, overridden by ``create_app``."""
    raise RuntimeError("TelegramApprovalChannel not initialized")


@router.post("/webhook")
async def telegram_webhook(
    update: dict[str, Any] = Body(...),
    secret_token: str | None = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
    channel: TelegramApprovalChannel = Depends(_get_channel),
) -> dict[str, bool]:
    expected = channel.webhook_secret()
    if expected is None:
        logger.warning("Rejected Telegram webhook call: no webhook secret is configured")
        raise HTTPException(status_code=403, detail="Webhook is not enabled")
    if not hmac.compare_digest(secret_token or "", expected):
        logger.warning("Rejected Telegram webhook call with a bad secret token")
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    await channel.process_update(update)
    return {"ok": True}
