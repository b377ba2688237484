# backend/strataguard/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ViolationStatusLiteral = Literal["new", "pending_approval", "approved", "disputed", "rejected"]
YesNo = Literal["yes", "no"]


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -------------------- Auth --------------------

class PrincipalOut(ApiModel):
    user_id: int
    email: str
    full_name: str
    role: str


class LoginIn(ApiModel):
    email: str
    password: str = Field(min_length=1)


class LoginOut(ApiModel):
    access_token: str
    token_type: str = "bearer"
    user: PrincipalOut


# -------------------- Categories --------------------

class CategoryIn(ApiModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    bylaw_reference: Optional[str] = None
    default_fine_amount: Optional[int] = Field(default=None, ge=0)
    active: bool = True


class CategoryOut(CategoryIn):
    id: int
    created_at: datetime
    updated_at: datetime


# -------------------- Bylaws --------------------

class BylawIn(ApiModel):
    section_number: str = Field(min_length=1, max_length=60)
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    parent_section_id: Optional[int] = None
    section_order: int = 0
    part_number: Optional[str] = Field(default=None, max_length=40)
    part_title: Optional[str] = Field(default=None, max_length=255)
    is_active: bool = True
    effective_date: Optional[date] = None


class BylawUpdate(ApiModel):
    """Partial update; unset fields keep their value."""

    section_number: Optional[str] = Field(default=None, min_length=1, max_length=60)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    parent_section_id: Optional[int] = None
    section_order: Optional[int] = None
    part_number: Optional[str] = Field(default=None, max_length=40)
    part_title: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None
    effective_date: Optional[date] = None
    revision_notes: Optional[str] = None


class BylawOut(BylawIn):
    id: int
    uuid: str
    created_by_id: Optional[int] = None
    updated_by_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class BylawSuggestionOut(ApiModel):
    id: int
    section_number: str
    title: str
    part_title: Optional[str] = None


class BylawSectionOut(ApiModel):
    id: int
    section_number: str
    title: str
    section_order: int


class BylawPartOut(ApiModel):
    part_number: Optional[str] = None
    part_title: Optional[str] = None
    sections: List[BylawSectionOut]


class BylawRevisionOut(ApiModel):
    id: int
    bylaw_id: int
    title: str
    content: str
    revision_notes: Optional[str] = None
    effective_date: Optional[date] = None
    created_by_id: Optional[int] = None
    created_by_name: Optional[str] = None
    created_at: datetime


class BylawImportOut(ApiModel):
    imported: int
    skipped: int


# -------------------- Units / persons --------------------

class UnitPersonIn(ApiModel):
    full_name: str = Field(min_length=1)
    email: str
    phone: Optional[str] = None
    role: Literal["owner", "tenant"]
    receive_email_notifications: bool = True

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("invalid email address")
        return v


class UnitCreate(ApiModel):
    unit_number: str = Field(min_length=1, max_length=40)
    strata_lot: Optional[str] = None
    floor: Optional[str] = None
    townhouse: bool = False
    phone: Optional[str] = None
    notes: Optional[str] = None
    persons: List[UnitPersonIn] = Field(default_factory=list)


class UnitPersonOut(ApiModel):
    person_id: int
    full_name: str
    email: str
    phone: Optional[str] = None
    role: str
    receive_email_notifications: bool


class UnitOut(ApiModel):
    id: int
    unit_number: str
    strata_lot: Optional[str] = None
    floor: Optional[str] = None
    townhouse: bool
    phone: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    persons: List[UnitPersonOut] = Field(default_factory=list)


# -------------------- Violations --------------------

class ViolationCreate(ApiModel):
    unit_id: int
    category_id: Optional[int] = None
    bylaw_id: Optional[int] = None
    violation_type: Optional[str] = None
    violation_date: date
    violation_time: Optional[str] = None
    description: str = Field(min_length=1)
    bylaw_reference: Optional[str] = None

    incident_area: Optional[str] = None
    concierge_name: Optional[str] = None
    people_involved: Optional[str] = None
    noticed_by: Optional[str] = None
    damage_to_property: Optional[YesNo] = None
    damage_details: Optional[str] = None
    police_involved: Optional[YesNo] = None
    police_details: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _blank_as_missing(cls, data: Any) -> Any:
        # multipart forms send "" for untouched optional fields
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if not (isinstance(v, str) and not v.strip())}
        return data


class ViolationOut(ApiModel):
    id: int
    uuid: str
    reference_number: str
    unit_id: int
    unit_number: Optional[str] = None
    reported_by_id: int
    reporter_name: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    violation_type: str
    violation_date: date
    violation_time: Optional[str] = None
    description: str
    bylaw_reference: Optional[str] = None
    status: str
    fine_amount: Optional[int] = None
    attachments: List[str] = Field(default_factory=list)

    incident_area: Optional[str] = None
    concierge_name: Optional[str] = None
    people_involved: Optional[str] = None
    noticed_by: Optional[str] = None
    damage_to_property: Optional[str] = None
    damage_details: Optional[str] = None
    police_involved: Optional[str] = None
    police_details: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class ViolationListOut(ApiModel):
    violations: List[ViolationOut]
    total: int
    page: int
    limit: int


class StatusChangeIn(ApiModel):
    status: ViolationStatusLiteral
    comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    # optimistic guard: 409 when the stored status differs
    expected_status: Optional[ViolationStatusLiteral] = None


class FineIn(ApiModel):
    amount: int = Field(ge=0)


class ApproveIn(ApiModel):
    amount: int = Field(ge=0)
    comment: Optional[str] = None


class CommentIn(ApiModel):
    comment: str = Field(min_length=1)


class HistoryOut(ApiModel):
    id: int
    violation_id: int
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    action: str
    comment: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


# -------------------- Public dispute flow --------------------

class PublicPersonOut(ApiModel):
    id: int
    full_name: str
    email: str  # obfuscated
    role: str


class PublicViolationOut(ApiModel):
    id: int
    uuid: str
    reference_number: str
    unit_number: Optional[str] = None
    violation_type: str
    violation_date: date
    violation_time: Optional[str] = None
    description: str
    bylaw_reference: Optional[str] = None
    status: str
    fine_amount: Optional[int] = None
    created_at: datetime
    persons: List[PublicPersonOut] = Field(default_factory=list)


class LinkStatusOut(ApiModel):
    status: Literal["valid", "used", "expired", "invalid"]
    violation: Optional[PublicViolationOut] = None


class SendCodeIn(ApiModel):
    person_id: int


class SendCodeOut(ApiModel):
    ok: bool = True
    email: str  # obfuscated
    expires_in_minutes: int


class VerifyCodeIn(ApiModel):
    person_id: int
    code: str = Field(min_length=1, max_length=12)


class VerifyCodeOut(ApiModel):
    session_id: str
    expires_at: datetime
    violation_id: int
    violation_uuid: str
    person: PublicPersonOut


class DisputeIn(ApiModel):
    comment: str = Field(min_length=1)


class PublicHistoryOut(ApiModel):
    id: int
    action: str
    comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class PublicViolationDetailOut(ApiModel):
    violation: PublicViolationOut
    history: List[PublicHistoryOut]


# -------------------- Reports --------------------

class MonthCount(ApiModel):
    month: str
    count: int


class CategoryCount(ApiModel):
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    count: int


class StatsOut(ApiModel):
    total: int
    by_status: dict[str, int]
    resolved: int
    average_resolution_days: Optional[float] = None
    approved_fines_total: int
    by_month: List[MonthCount]
    by_category: List[CategoryCount]


class RepeatViolationItem(ApiModel):
    id: int
    uuid: str
    status: str
    violation_type: str
    created_at: datetime


class RepeatUnitOut(ApiModel):
    unit_id: int
    unit_number: str
    total: int
    last_violation_at: Optional[datetime] = None
    violation_types: List[str]
    violations: List[RepeatViolationItem]


# -------------------- Audit --------------------

class AuditEventOut(ApiModel):
    id: int
    actor_user_id: Optional[int] = None
    actor_name: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details_json: Optional[str] = None
    ip_address: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime
