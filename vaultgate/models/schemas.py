# vaultgate/models/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from vaultgate.models.vault import (
    AttributionRecord,
    BranchChoice,
    FileMetadata,
    FormValues,
    FunnelStep,
    LeadFormData,
    ScanResult,
    WireModel,
)


# ---------- Leads ----------
class LeadUpsert(LeadFormData):
    event_id: Optional[str] = None
    attribution: Optional[AttributionRecord] = None


class LeadResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: Optional[str] = None
    phone: Optional[str] = None
    zip: Optional[str] = None
    event_id: Optional[str] = None
    status: str
    has_quote: str
    window_count: Optional[int] = None
    timeline: Optional[str] = None
    budget_range: Optional[str] = None
    callback_preference: Optional[str] = None
    callback_time: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Scans ----------
class ScanResponse(BaseModel):
    id: int
    lead_id: int
    event_id: str
    status: str
    original_filename: Optional[str] = None
    file_mime: Optional[str] = None
    file_size: Optional[int] = None
    file_sha256: Optional[str] = None
    file_pages: Optional[int] = None
    overall_score: Optional[int] = None
    safety_score: Optional[int] = None
    scope_score: Optional[int] = None
    price_score: Optional[int] = None
    fine_print_score: Optional[int] = None
    warranty_score: Optional[int] = None
    warnings: List[str] = []
    missing_items: List[str] = []
    savings_low: Optional[float] = None
    savings_high: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("warnings", "missing_items", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or []


# ---------- Funnel ----------
class FunnelStateResponse(WireModel):
    current_step: FunnelStep
    previous_step: Optional[FunnelStep] = None
    lead_id: Optional[str] = None
    event_id: str
    branch_choice: BranchChoice
    form_values: FormValues
    scan_result: Optional[ScanResult] = None
    file_metadata: Optional[FileMetadata] = None
    is_exit_intercept_active: bool
    exit_from_step: Optional[FunnelStep] = None
    can_resume: bool
    attribution: AttributionRecord
