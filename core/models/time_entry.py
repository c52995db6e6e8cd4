"""Time entry models. Time entries are read-only to the ticket core."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, field_validator


class TimeEntry(BaseModel):
    """A logged block of work, as stored."""

    id: UUID
    user_id: UUID
    date: date
    project_id: UUID | None = None
    billable: bool = False
    hours: Decimal = Decimal("0")
    location: str = ""
    approver: str = ""
    po_afe: str = ""
    cc: str = ""
    other: str = ""
    description: str = ""
    is_demo: bool = False

    model_config = {"from_attributes": True}

    @field_validator("location", "approver", "po_afe", "cc", "other", "description", mode="before")
    @classmethod
    def null_text(cls, value):
        return "" if value is None else value


class BillableEntryFilters(BaseModel):
    """Optional filters for listing billable entries."""

    start_date: date | None = None
    end_date: date | None = None
    user_id: UUID | None = None
    is_demo: bool | None = None
