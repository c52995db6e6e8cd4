"""Service ticket expense line items (travel, subsistence, expenses, equipment)."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class ExpenseType(str, Enum):
    """Expense line category."""

    TRAVEL = "Travel"
    SUBSISTENCE = "Subsistence"
    EXPENSES = "Expenses"
    EQUIPMENT = "Equipment"


class ExpenseCreate(BaseModel):
    """Data required to add an expense line to a ticket."""

    service_ticket_id: UUID
    expense_type: ExpenseType
    description: str = Field("", max_length=500)
    quantity: Decimal = Field(Decimal("1"), ge=0)
    rate: Decimal = Field(Decimal("0"), ge=0)
    unit: str | None = None


class ExpenseUpdate(BaseModel):
    """Data that can be updated on an expense line. All fields optional."""

    expense_type: ExpenseType | None = None
    description: str | None = Field(None, max_length=500)
    quantity: Decimal | None = Field(None, ge=0)
    rate: Decimal | None = Field(None, ge=0)
    unit: str | None = None


class ServiceTicketExpense(BaseModel):
    """Full expense line as stored."""

    id: UUID
    service_ticket_id: UUID
    expense_type: ExpenseType
    description: str = ""
    quantity: Decimal
    rate: Decimal
    unit: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def amount(self) -> Decimal:
        """Line amount: quantity x rate."""
        return self.quantity * self.rate
