# vaultgate/models/vault.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FunnelStep(str, Enum):
    LEAD_CAPTURE = "lead_capture"
    PIVOT_QUESTION = "pivot_question"
    SCANNER_UPLOAD = "scanner_upload"
    ANALYSIS_THEATER = "analysis_theater"
    RESULT_DISPLAY = "result_display"
    VAULT_CONFIRMATION = "vault_confirmation"
    PROJECT_DETAILS = "project_details"
    FINAL_ESCALATION = "final_escalation"
    SUCCESS = "success"
    EXIT_INTERCEPT = "exit_intercept"


class BranchChoice(str, Enum):
    YES = "yes"
    NO = "no"
    UNSET = "unset"


class WireModel(BaseModel):
    """camelCase on the wire and in storage, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------- Step forms (tagged by the step that collects them) ----------
class LeadFormData(WireModel):
    step: Literal["lead_capture"] = "lead_capture"
    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., max_length=320, pattern=r"^[\w\.\+-]+@[\w\.-]+\.\w+$")
    zip: Optional[str] = Field(None, max_length=10)
    honeypot: Optional[str] = None  # hidden field, bots fill it

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_names(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def _normalise_email(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class PivotFormData(WireModel):
    step: Literal["pivot_question"] = "pivot_question"
    has_estimate: bool
    phone: Optional[str] = Field(None, max_length=32)


class ProjectDetailsFormData(WireModel):
    step: Literal["project_details"] = "project_details"
    window_count: Optional[int] = Field(None, ge=0, le=1000)
    timeline: Optional[str] = Field(None, max_length=60)
    budget_range: Optional[str] = Field(None, max_length=60)


class EscalationFormData(WireModel):
    step: Literal["final_escalation"] = "final_escalation"
    callback_preference: Literal["asap", "scheduled", "email_only"]
    callback_time: Optional[str] = Field(None, max_length=60)


StepForm = Annotated[
    Union[LeadFormData, PivotFormData, ProjectDetailsFormData, EscalationFormData],
    Field(discriminator="step"),
]

# step -> FormValues attribute
FORM_SLOTS: Dict[str, str] = {
    "lead_capture": "lead",
    "pivot_question": "pivot",
    "project_details": "project_details",
    "final_escalation": "escalation",
}


class FormValues(WireModel):
    lead: Optional[LeadFormData] = None
    pivot: Optional[PivotFormData] = None
    project_details: Optional[ProjectDetailsFormData] = None
    escalation: Optional[EscalationFormData] = None

    def with_form(self, form: StepForm) -> "FormValues":
        """Copy with the slot for ``form.step`` replaced (revisits overwrite)."""
        return self.model_copy(update={FORM_SLOTS[form.step]: form})


# ---------- Scan ----------
class SavingsRange(WireModel):
    low: float = Field(..., ge=0)
    high: float = Field(..., ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "SavingsRange":
        if self.low > self.high:
            raise ValueError("estimated savings low must not exceed high")
        return self


class ScanResult(WireModel):
    overall_score: int = Field(..., ge=0, le=100)
    safety_score: int = Field(..., ge=0, le=100)
    scope_score: int = Field(..., ge=0, le=100)
    price_score: int = Field(..., ge=0, le=100)
    fine_print_score: int = Field(..., ge=0, le=100)
    warranty_score: int = Field(..., ge=0, le=100)
    warnings: List[str] = Field(default_factory=list)
    missing_items: List[str] = Field(default_factory=list)
    estimated_savings: Optional[SavingsRange] = None
    raw_result: Optional[Dict[str, Any]] = None


class FileMetadata(WireModel):
    name: str = Field(..., min_length=1, max_length=255)
    size: int = Field(..., ge=0)
    type: str = Field(..., max_length=120)
    sha256: Optional[str] = Field(None, pattern=r"^[0-9a-f]{64}$")
    pages: Optional[int] = Field(None, ge=0)


# ---------- Attribution ----------
IDENTIFIER_FIELDS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "msclkid",
    "fbp",
    "fbc",
)


class AttributionRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    fbclid: Optional[str] = None
    gclid: Optional[str] = None
    msclkid: Optional[str] = None  # Microsoft Ads click id
    fbp: Optional[str] = None  # browser id cookie
    fbc: Optional[str] = None  # click id cookie
    referrer: Optional[str] = None
    landing_page: Optional[str] = None

    def has_identifiers(self) -> bool:
        return any(getattr(self, f) for f in IDENTIFIER_FIELDS)


# ---------- Session ----------
class SessionRecord(WireModel):
    lead_id: Optional[str] = None
    event_id: str = Field(..., min_length=1)
    current_step: FunnelStep = FunnelStep.LEAD_CAPTURE
    branch_choice: BranchChoice = BranchChoice.UNSET
    form_values: FormValues = Field(default_factory=FormValues)
    scan_result: Optional[ScanResult] = Field(None, alias="scanResults")
    file_metadata: Optional[FileMetadata] = None
    exit_from_step: Optional[FunnelStep] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("branch_choice", mode="before")
    @classmethod
    def _null_branch(cls, v: Any) -> Any:
        return BranchChoice.UNSET if v is None else v

    @field_validator("lead_id", mode="before")
    @classmethod
    def _lead_id_str(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    def is_expired(self, now: datetime, max_age: timedelta) -> bool:
        return now - self.created_at > max_age

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "SessionRecord":
        return cls.model_validate_json(raw)
