"""
services/notification/router.py
Telegram notification endpoint: forwards notification-worthy events to the
workflow webhook for users who linked a Telegram chat.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from config.database import get_db
from config.settings import settings
from services.notification.telegram import NOT_ENABLED_REASON, build_payload, deliver, is_enabled
from shared.middleware.auth import TokenData, get_token_data
from shared.models.models import Profile
from shared.schemas.schemas import TelegramNotifyRequest, TelegramNotifyResponse
from shared.utils.errors import ErrorCode, api_error, not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/telegram", response_model=TelegramNotifyResponse)
async def send_telegram_notification(
    data: TelegramNotifyRequest,
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
):
    """
    Send one event to a user's Telegram.
    Returns sent=false (not an error) when the user has Telegram switched off.
    """
    if not settings.TELEGRAM_WEBHOOK_URL:
        raise api_error(500, ErrorCode.TELEGRAM_NOT_CONFIGURED, "Telegram webhook URL not configured")

    result = await db.execute(select(Profile).where(Profile.id == data.user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise not_found("User")

    if not is_enabled(profile):
        return TelegramNotifyResponse(sent=False, reason=NOT_ENABLED_REASON)

    payload = build_payload(profile, data.event_type, data.data)
    sent = await run_in_threadpool(deliver, payload)
    if not sent:
        raise api_error(500, ErrorCode.WEBHOOK_FAILED, "Failed to send webhook")

    logger.info(f"Telegram {data.event_type} sent to {profile.id} (requested by {token.user_id})")
    return TelegramNotifyResponse(sent=True)
