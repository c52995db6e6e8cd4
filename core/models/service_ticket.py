"""Service ticket domain models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.billing_keys import build_billing_key, build_grouping_key
from utils.timezone import parse_entry_date


class WorkflowStatus(str, Enum):
    """Service ticket workflow status."""

    DRAFT = "draft"
    REJECTED = "rejected"
    APPROVED = "approved"
    PDF_EXPORTED = "pdf_exported"
    SENT_TO_CNRL = "sent_to_cnrl"
    CNRL_APPROVED = "cnrl_approved"
    SUBMITTED_TO_CNRL = "submitted_to_cnrl"

    @property
    def is_open(self) -> bool:
        """Draft or rejected: still editable by the employee."""
        return self in (WorkflowStatus.DRAFT, WorkflowStatus.REJECTED)

    @property
    def rank(self) -> int:
        """Position on the forward path. Draft and rejected share rank 0."""
        return _STATUS_RANK[self]


_STATUS_RANK = {
    WorkflowStatus.DRAFT: 0,
    WorkflowStatus.REJECTED: 0,
    WorkflowStatus.APPROVED: 1,
    WorkflowStatus.PDF_EXPORTED: 2,
    WorkflowStatus.SENT_TO_CNRL: 3,
    WorkflowStatus.CNRL_APPROVED: 4,
    WorkflowStatus.SUBMITTED_TO_CNRL: 5,
}


class HeaderOverrides(BaseModel):
    """
    Header snapshot stored on a ticket.

    _grouping_key and _billing_key are written when the ticket is created and
    are the source of truth for which billing group the ticket belongs to,
    so later edits to approver/CC on the time entries cannot orphan it.
    Customer snapshot keys (customer_name, address, ...) pass through as
    extra fields.
    """

    model_config = {"extra": "allow", "populate_by_name": True}

    approver: str | None = None
    po_afe: str | None = None
    cc: str | None = None
    other: str | None = None
    service_location: str | None = None
    grouping_key: str | None = Field(None, alias="_grouping_key")
    billing_key: str | None = Field(None, alias="_billing_key")

    def effective_grouping_key(self) -> str:
        """Stored grouping key, or one derived from po_afe for older rows."""
        if self.grouping_key:
            return build_grouping_key(self.grouping_key)
        return build_grouping_key(self.po_afe)

    def effective_billing_key(self) -> str:
        if self.billing_key:
            return self.billing_key
        return build_billing_key(self.approver, self.po_afe, self.cc)

    def merged(self, values: dict[str, Any]) -> "HeaderOverrides":
        """Copy with values (field names or stored keys) laid over this snapshot."""
        data = self.to_storage()
        for key, value in values.items():
            field = type(self).model_fields.get(key)
            data[field.alias if field is not None and field.alias else key] = value
        return HeaderOverrides.model_validate(data)

    def to_storage(self) -> dict[str, Any]:
        """JSON shape of the header_overrides column."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def is_empty(self) -> bool:
        return not self.to_storage()


class TicketGrouping(BaseModel):
    """
    The attributes a time entry contributes to ticket grouping.

    Passed by callers on every time entry save/delete. Only po_afe decides
    the grouping key; approver, cc and other are header display values.
    """

    date: date
    user_id: UUID
    customer_id: UUID | None = None
    project_id: UUID | None = None
    location: str | None = None
    approver: str | None = None
    po_afe: str | None = None
    cc: str | None = None
    other: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def calendar_day(cls, value: Any) -> Any:
        return parse_entry_date(value)

    @property
    def ticket_location(self) -> str:
        return (self.location or "").strip()

    @property
    def grouping_key(self) -> str:
        return build_grouping_key(self.po_afe)

    @property
    def billing_key(self) -> str:
        return build_billing_key(self.approver, self.po_afe, self.cc)

    def header_values(self) -> dict[str, str]:
        """Values merged into header_overrides on sync."""
        return {
            "approver": self.approver or "",
            "po_afe": self.po_afe or "",
            "cc": self.cc or "",
            "other": self.other or "",
            "service_location": self.ticket_location,
        }


class TicketSnapshot(BaseModel):
    """Financial figures frozen onto a ticket when it is approved."""

    total_hours: Decimal | None = Field(None, ge=0)
    total_amount: Decimal | None = Field(None, ge=0)
    edited_hours: dict[str, Any] | None = None
    edited_descriptions: dict[str, Any] | None = None


class TicketRecordCreate(BaseModel):
    """Data for inserting a numbered ticket directly."""

    ticket_number: str
    date: date
    user_id: UUID
    customer_id: UUID | None = None
    project_id: UUID | None = None
    location: str = ""
    total_hours: Decimal = Field(Decimal("0"), ge=0)
    total_amount: Decimal = Field(Decimal("0"), ge=0)
    approved_by_admin_id: UUID | None = None
    header_overrides: HeaderOverrides | None = None


class TicketListFilters(BaseModel):
    """Optional filters for listing numbered tickets."""

    start_date: date | None = None
    end_date: date | None = None
    user_id: UUID | None = None
    workflow_status: WorkflowStatus | None = None


class CustomerSnapshot(BaseModel):
    """Customer fields copied into header_overrides of open tickets."""

    name: str | None = None
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    service_location: str | None = None
    location_code: str | None = None
    po_number: str | None = None
    approver_name: str | None = None

    def to_overrides(self) -> dict[str, str]:
        """Header override keys for the fields that were provided."""
        overrides: dict[str, str] = {}
        renamed = {"name": "customer_name", "approver_name": "approver"}
        for field in (
            "name", "contact_name", "email", "phone", "address", "zip_code",
            "service_location", "location_code", "po_number", "approver_name",
        ):
            value = getattr(self, field)
            if value is not None:
                overrides[renamed.get(field, field)] = value
        if self.city is not None or self.state is not None:
            overrides["city_state"] = ", ".join(v for v in (self.city, self.state) if v)
        return overrides


class ServiceTicket(BaseModel):
    """Full service ticket row as stored."""

    id: UUID
    ticket_number: str | None = None
    employee_initials: str | None = None
    year: int | None = None
    sequence_number: int | None = None
    date: date
    user_id: UUID
    customer_id: UUID | None = None
    project_id: UUID | None = None
    location: str = ""
    workflow_status: WorkflowStatus = WorkflowStatus.DRAFT
    total_hours: Decimal | None = None
    total_amount: Decimal | None = None
    is_edited: bool = False
    edited_hours: dict[str, Any] | None = None
    edited_descriptions: dict[str, Any] | None = None
    edited_entry_overrides: dict[str, Any] | None = None
    header_overrides: HeaderOverrides = Field(default_factory=HeaderOverrides)
    approved_by_admin_id: UUID | None = None
    rejected_at: datetime | None = None
    rejection_notes: str | None = None
    is_discarded: bool = False
    restored_at: datetime | None = None
    pdf_exported_at: datetime | None = None
    pdf_url: str | None = None
    sent_to_cnrl_at: datetime | None = None
    cnrl_approved_at: datetime | None = None
    submitted_to_cnrl_at: datetime | None = None
    cnrl_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("header_overrides", mode="before")
    @classmethod
    def empty_overrides(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("location", mode="before")
    @classmethod
    def empty_location(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("workflow_status", mode="before")
    @classmethod
    def default_status(cls, value: Any) -> Any:
        # Rows predating the workflow columns
        return WorkflowStatus.DRAFT if value is None else value

    @field_validator("is_discarded", "is_edited", mode="before")
    @classmethod
    def null_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def is_approved(self) -> bool:
        """A numbered ticket is approved and its snapshot is frozen."""
        return self.ticket_number is not None

    @property
    def is_open(self) -> bool:
        """Still a draft/rejected ticket that time entry edits may change."""
        return not self.is_approved and self.workflow_status.is_open

    @property
    def grouping_key(self) -> str:
        return self.header_overrides.effective_grouping_key()
