# app/models/api/call_response.py
"""
Call and service status response models.
Used by routes for output formatting.
"""

from pydantic import BaseModel, ConfigDict, Field


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to Zoom for every accepted webhook."""

    message: str = Field(default="Webhook received")


class LogCallResponse(BaseModel):
    """Response for a manually logged call."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(default="Call logged successfully")
    list_item_id: str = Field(..., alias="listItemId", description="SharePoint list item id")


class HealthResponse(BaseModel):
    status: str = Field(default="ok")
    timestamp: str = Field(..., description="Current server time (ISO-8601)")
    environment: str = Field(..., description="Deployment environment")


class QueueCountsResponse(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class QueueStatusResponse(BaseModel):
    """Job counts per queue."""

    model_config = ConfigDict(populate_by_name=True)

    missed_calls: QueueCountsResponse = Field(..., alias="missedCalls")
    voicemails: QueueCountsResponse
    sales_calls: QueueCountsResponse = Field(..., alias="salesCalls")


class GraphConnectionResponse(BaseModel):
    success: bool
    message: str
