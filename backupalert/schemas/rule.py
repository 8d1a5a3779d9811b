"""Rule API schemas."""

from typing import Any

from pydantic import BaseModel, Field


class RuleTestRequest(BaseModel):
    """Sample event used to dry-run a rule."""

    event_data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event data; severity, resource_type and resource_id are used for filter matching",
    )
