"""
Expense line items on service tickets.

Each line belongs to exactly one ticket; amount is quantity x rate.
Lines are removed before their ticket whenever a ticket is purged.
"""

import logging
from uuid import UUID

from clients.filters import Eq, OrderBy
from clients.record_store import RecordStore
from core.audit import AuditLogger, AuditAction, compute_changes
from core.models import ServiceTicketExpense, ExpenseCreate, ExpenseUpdate
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

EXPENSES_TABLE = "service_ticket_expenses"


class ExpenseService:
    """Service for ticket expense lines."""

    def __init__(self, store: RecordStore, audit: AuditLogger):
        self.store = store
        self.audit = audit

    def get_by_ticket_id(self, ticket_id: UUID) -> list[ServiceTicketExpense]:
        """Expense lines of a ticket, oldest first."""
        rows = self.store.select(
            EXPENSES_TABLE,
            [Eq("service_ticket_id", ticket_id)],
            order_by=[OrderBy("created_at")],
        )
        return [ServiceTicketExpense.model_validate(row) for row in rows]

    def get_by_id(self, expense_id: UUID) -> ServiceTicketExpense | None:
        row = self.store.select_one(EXPENSES_TABLE, [Eq("id", expense_id)])
        if row is None:
            return None
        return ServiceTicketExpense.model_validate(row)

    def create(self, data: ExpenseCreate) -> ServiceTicketExpense:
        """
        Add an expense line.

        Args:
            data: Line data; the ticket must exist (store constraint)

        Returns:
            Created expense line
        """
        row = self.store.insert(EXPENSES_TABLE, {
            "service_ticket_id": data.service_ticket_id,
            "expense_type": data.expense_type.value,
            "description": data.description,
            "quantity": data.quantity,
            "rate": data.rate,
            "unit": data.unit,
            "created_at": now_utc(),
        })
        expense = ServiceTicketExpense.model_validate(row)

        self.audit.log_change(
            entity_type="service_ticket_expense",
            entity_id=expense.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        return expense

    def update(self, expense_id: UUID, data: ExpenseUpdate) -> ServiceTicketExpense:
        """
        Update an expense line.

        Raises:
            ValueError: If the line is not found
        """
        current = self.get_by_id(expense_id)
        if current is None:
            raise ValueError(f"Expense {expense_id} not found")

        updates = data.model_dump(exclude_none=True)
        if not updates:
            return current
        if "expense_type" in updates:
            updates["expense_type"] = updates["expense_type"].value

        rows = self.store.update(EXPENSES_TABLE, [Eq("id", expense_id)], updates)
        if not rows:
            raise ValueError(f"Expense {expense_id} not found")
        updated = ServiceTicketExpense.model_validate(rows[0])

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="service_ticket_expense",
                entity_id=expense_id,
                action=AuditAction.UPDATE,
                changes=changes
            )

        return updated

    def delete(self, expense_id: UUID) -> bool:
        """
        Delete one expense line.

        Returns:
            True if deleted, False if not found
        """
        current = self.get_by_id(expense_id)
        if current is None:
            return False

        self.store.delete(EXPENSES_TABLE, [Eq("id", expense_id)])

        self.audit.log_change(
            entity_type="service_ticket_expense",
            entity_id=expense_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")}
        )
        return True

    def delete_by_ticket_id(self, ticket_id: UUID) -> int:
        """Delete every expense line of a ticket. Returns how many were removed."""
        removed = self.store.delete(EXPENSES_TABLE, [Eq("service_ticket_id", ticket_id)])
        if removed:
            logger.info(f"Removed {removed} expense line(s) of ticket {ticket_id}")
            self.audit.log_change(
                entity_type="service_ticket",
                entity_id=ticket_id,
                action=AuditAction.DELETE,
                changes={"deleted_expense_lines": removed}
            )
        return removed
