"""Core domain models."""

from core.models.service_ticket import (
    ServiceTicket, WorkflowStatus, HeaderOverrides, TicketGrouping,
    TicketSnapshot, TicketRecordCreate, TicketListFilters, CustomerSnapshot,
)
from core.models.expense import ServiceTicketExpense, ExpenseCreate, ExpenseUpdate, ExpenseType
from core.models.time_entry import TimeEntry, BillableEntryFilters

__all__ = [
    # ServiceTicket
    "ServiceTicket", "WorkflowStatus", "HeaderOverrides", "TicketGrouping",
    "TicketSnapshot", "TicketRecordCreate", "TicketListFilters", "CustomerSnapshot",
    # Expense
    "ServiceTicketExpense", "ExpenseCreate", "ExpenseUpdate", "ExpenseType",
    # TimeEntry
    "TimeEntry", "BillableEntryFilters",
]
