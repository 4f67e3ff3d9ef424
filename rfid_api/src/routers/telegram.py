"""
Telegram webhook router.

When a webhook URL is configured Telegram POSTs every bot update here.
Updates are acknowledged immediately and handled after the response.
"""

import hmac
import structlog
from typing import Any, Dict, Optional
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, status

from rfid_api.src.dependencies import ServiceContainer, get_container

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/telegram", tags=["Telegram"])


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def telegram_webhook(
    background_tasks: BackgroundTasks,
    update: Dict[str, Any] = Body(...),
    secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
    container: ServiceContainer = Depends(get_container)
) -> Dict[str, bool]:
    expected = container.settings.telegram_webhook_secret
    if expected and not hmac.compare_digest(secret_token or "", expected):
        logger.warning("telegram_webhook_rejected", reason="secret_mismatch")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="invalid webhook secret"
        )

    if container.bot_updates is None:
        logger.debug("telegram_update_dropped", reason="bot_disabled")
        return {"ok": True}

    background_tasks.add_task(container.bot_updates.handle, update)
    return {"ok": True}
