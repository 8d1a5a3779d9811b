"""Notification channel API routes."""

import uuid

from fastapi import APIRouter

from backupalert.api.deps import NotificationServiceDep, NotificationStoreDep
from backupalert.models.notification import NotificationLog
from backupalert.schemas.common import APIResponse

router = APIRouter(prefix="/channels", tags=["channels"])


@router.post("/{channel_id}/test", response_model=APIResponse[NotificationLog])
async def test_channel(
    channel_id: uuid.UUID,
    store: NotificationStoreDep,
    service: NotificationServiceDep,
) -> APIResponse[NotificationLog]:
    """Send a test message to a channel through the production delivery path.

    Delivery failures are reported with the same error classes a real
    event would produce.
    """
    channel = await store.get_channel(channel_id)
    log = await service.test_channel(channel)
    return APIResponse(data=log)
