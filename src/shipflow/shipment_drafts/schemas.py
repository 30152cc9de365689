"""Pydantic schemas for the Shipment Drafts API

Request/response models for /api/v1/shipment-drafts endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Requests
# ============================================================================

class OpenDraftRequest(BaseModel):
    """POST /shipment-drafts: create a draft, or resume one by key."""
    draft_key: Optional[UUID] = Field(None, description="Draft to resume; omit for a new draft")
    creation_method: Literal["advanced", "quick"] = "advanced"

    model_config = ConfigDict(extra='forbid')


class AdvanceRequest(BaseModel):
    """POST /{key}/advance. Without payload the step moves and nothing is persisted."""
    payload: Optional[Union[Dict[str, Any], List[Any]]] = None

    model_config = ConfigDict(extra='forbid')


class JumpRequest(BaseModel):
    step: Union[int, str] = Field(..., description="Step index (0-5) or name")

    model_config = ConfigDict(extra='forbid')


class RateBindingRequest(BaseModel):
    """PUT /{key}/rate: bind the selected rate."""
    rate_document_id: Optional[str] = None
    rate_snapshot: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra='forbid')

    @model_validator(mode="after")
    def require_binding(self):
        if not self.rate_document_id and not self.rate_snapshot:
            raise ValueError("rate_document_id or rate_snapshot is required")
        return self


class MarkUnrecoverableRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)

    model_config = ConfigDict(extra='forbid')


# ============================================================================
# Responses
# ============================================================================

class SectionCompletenessResponse(BaseModel):
    complete: bool
    missing: List[str] = []


class BookingAttemptResponse(BaseModel):
    """Booking attempt state"""
    attempt_id: str
    draft_key: UUID
    phase: str  # idle, reserving, generating_document, completed, error
    phases: List[str] = []
    carrier_key: Optional[str] = None
    capability: Optional[str] = None
    rate_document_id: Optional[str] = None
    external_confirmation_id: Optional[str] = None
    document_status: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = []
    started_at: datetime
    finished_at: Optional[datetime] = None


class WorkspaceResponse(BaseModel):
    """State of an open draft workspace"""
    key: UUID
    human_id: Optional[str] = None
    creation_method: str
    resumed: bool = False
    notices: List[str] = []
    step_index: int
    step: str
    sections: Dict[str, Any]
    completeness: Dict[str, SectionCompletenessResponse]
    booking: Optional[BookingAttemptResponse] = None


class NavigationResponse(BaseModel):
    """Result of a step move plus the resulting workspace"""
    step_index: int
    step: str
    section_persisted: Optional[str] = None
    persist_error: Optional[str] = None
    workspace: WorkspaceResponse


class DraftListItem(BaseModel):
    key: UUID
    human_id: Optional[str] = None
    status: str
    creation_method: str
    shipment_type: Optional[str] = None
    customer_key: Optional[str] = None
    confirmation_number: Optional[str] = None
    carrier_key: Optional[str] = None
    updated_at: Optional[datetime] = None


class DraftListResponse(BaseModel):
    items: List[DraftListItem]
    total: int
    page: int
    per_page: int
    total_pages: int


class DraftStatusResponse(BaseModel):
    key: UUID
    human_id: Optional[str] = None
    status: str
    last_booking_error: Optional[str] = None
