# app/models/api/call_request.py
"""
Call API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, ConfigDict, Field


class LogCallRequest(BaseModel):
    """Request for manually logging an answered call."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(..., alias="callId", min_length=1, description="Zoom call id")
    contact: str | None = Field(default=None, description="Contact override")
    summary: str | None = Field(default=None, description="Summary override")
    priority: str | None = Field(default=None, description="Priority (default Medium)")
    status: str | None = Field(default=None, description="Status (default Completed)")
