"""Delivery log API routes."""

import uuid

from fastapi import APIRouter

from backupalert.api.deps import LimitDep, NotificationStoreDep
from backupalert.models.notification import NotificationLog
from backupalert.schemas.common import ListResponse

router = APIRouter(prefix="/orgs", tags=["logs"])


@router.get("/{org_id}/logs", response_model=ListResponse[NotificationLog])
async def list_logs(
    org_id: uuid.UUID,
    store: NotificationStoreDep,
    limit: LimitDep,
) -> ListResponse[NotificationLog]:
    """List an organization's most recent delivery log rows."""
    logs = await store.list_logs(org_id, limit=limit)
    return ListResponse(data=logs, total=len(logs))
