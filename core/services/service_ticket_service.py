"""
Service ticket lifecycle.

Tickets are derived from billable time entries: the first entry for a
date/user/customer/project/location/PO-AFE creates a draft, later entry edits
keep the draft's header in sync, and removing the last entry removes the
draft. An admin approves a ticket by assigning it a number; from then on the
ticket is frozen and only moves forward through export and client review.

Workflow:
    draft -> rejected -> draft -> approved -> pdf_exported
          -> sent_to_cnrl -> cnrl_approved -> submitted_to_cnrl

Every operation takes is_demo, which selects the sandbox table so demo data
and the numbers it consumes never touch real tickets.
"""

import logging
import time
from typing import Any, Callable
from uuid import UUID

from clients.filters import Eq, Filter, Gte, In, IsNull, Lte, Not, Or, OrderBy, not_discarded
from clients.record_store import RecordStore, UniqueViolationError
from core.audit import AuditLogger, AuditAction, compute_changes
from core.batch import BatchResult, PurgeIntent, run_batch
from core.billing_keys import LEGACY_GROUPING_KEY, parse_billing_key, same_po_afe
from core.config import TicketConfig
from core.exceptions import (
    InvalidTransitionError,
    MissingCustomerError,
    TicketFrozenError,
    TicketNotFoundError,
    TicketNumberAllocationError,
    TicketUpdateError,
)
from core.models import (
    BillableEntryFilters,
    CustomerSnapshot,
    HeaderOverrides,
    ServiceTicket,
    TicketGrouping,
    TicketListFilters,
    TicketRecordCreate,
    TicketSnapshot,
    TimeEntry,
    WorkflowStatus,
)
from core.services.expense_service import ExpenseService
from core.ticket_matcher import MatchTarget, MatchTier, TicketMatch, TicketMatcher
from core.ticket_numbers import (
    ParsedTicketNumber,
    TicketNumberAllocator,
    format_ticket_number,
    parse_ticket_number,
    ticket_table,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

TIME_ENTRIES_TABLE = "time_entries"
USERS_TABLE = "users"

_ENTITY = "service_ticket"


class ServiceTicketService:
    """Service for service ticket operations."""

    def __init__(
        self,
        store: RecordStore,
        audit: AuditLogger,
        allocator: TicketNumberAllocator | None = None,
        matcher: TicketMatcher | None = None,
        expenses: ExpenseService | None = None,
        config: TicketConfig | None = None,
    ):
        self.store = store
        self.audit = audit
        self.config = config or (allocator.config if allocator else TicketConfig())
        self.allocator = allocator or TicketNumberAllocator(store, self.config)
        self.matcher = matcher or TicketMatcher(store)
        self.expenses = expenses or ExpenseService(store, audit)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_by_id(self, ticket_id: UUID, is_demo: bool = False) -> ServiceTicket | None:
        """
        Get ticket by ID.

        Returns:
            Ticket if found, None otherwise.
        """
        row = self.store.select_one(ticket_table(is_demo), [Eq("id", ticket_id)])
        if row is None:
            return None
        return ServiceTicket.model_validate(row)

    def _require(self, ticket_id: UUID, is_demo: bool) -> ServiceTicket:
        ticket = self.get_by_id(ticket_id, is_demo)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    def get_tickets_ready_for_export(self, is_demo: bool = False) -> list[ServiceTicket]:
        """Approved, numbered tickets outside the trash, newest date first."""
        rows = self.store.select(
            ticket_table(is_demo),
            [
                Eq("workflow_status", WorkflowStatus.APPROVED.value),
                Not(IsNull("ticket_number")),
                not_discarded(),
            ],
            order_by=[OrderBy("date", descending=True)],
        )
        return [ServiceTicket.model_validate(row) for row in rows]

    def get_all_tickets(
        self,
        filters: TicketListFilters | None = None,
        is_demo: bool = False,
    ) -> list[ServiceTicket]:
        """
        List numbered tickets.

        Args:
            filters: Optional date range, user and workflow status
            is_demo: Query the sandbox table

        Returns:
            Tickets ordered by date DESC
        """
        filters = filters or TicketListFilters()
        query: list[Filter] = [Not(IsNull("ticket_number"))]
        if filters.start_date:
            query.append(Gte("date", filters.start_date))
        if filters.end_date:
            query.append(Lte("date", filters.end_date))
        if filters.user_id:
            query.append(Eq("user_id", filters.user_id))
        if filters.workflow_status:
            query.append(Eq("workflow_status", filters.workflow_status.value))

        rows = self.store.select(
            ticket_table(is_demo),
            query,
            order_by=[OrderBy("date", descending=True)],
        )
        return [ServiceTicket.model_validate(row) for row in rows]

    def get_rejected_count_for_user(self, user_id: UUID, is_demo: bool = False) -> int:
        """Rejected tickets waiting on the employee, trash excluded."""
        return self.store.count(
            ticket_table(is_demo),
            [
                Eq("user_id", user_id),
                Eq("workflow_status", WorkflowStatus.REJECTED.value),
                not_discarded(),
            ],
        )

    def get_resubmitted_count_for_admin(self, is_demo: bool = False) -> int:
        """Tickets rejected once and since resubmitted, trash excluded."""
        return self.store.count(
            ticket_table(is_demo),
            [
                Not(IsNull("rejected_at")),
                Not(In("workflow_status", [WorkflowStatus.DRAFT.value, WorkflowStatus.REJECTED.value])),
                not_discarded(),
            ],
        )

    def get_billable_entries(self, filters: BillableEntryFilters | None = None) -> list[TimeEntry]:
        """
        Billable time entries that can feed a ticket (project assigned).

        Returns:
            Entries ordered by date DESC
        """
        filters = filters or BillableEntryFilters()
        query: list[Filter] = [Eq("billable", True), Not(IsNull("project_id"))]
        if filters.start_date:
            query.append(Gte("date", filters.start_date))
        if filters.end_date:
            query.append(Lte("date", filters.end_date))
        if filters.user_id:
            query.append(Eq("user_id", filters.user_id))
        if filters.is_demo is not None:
            query.append(Eq("is_demo", filters.is_demo))

        rows = self.store.select(
            TIME_ENTRIES_TABLE,
            query,
            order_by=[OrderBy("date", descending=True)],
        )
        return [TimeEntry.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Numbering
    # -------------------------------------------------------------------------

    def get_next_ticket_number(self, initials: str, is_demo: bool = False) -> str:
        """Next free ticket number for an employee in the current year."""
        return self.allocator.next_ticket_number(initials, is_demo)

    def _number_taken(self, ticket_number: str, is_demo: bool, ignore_id: UUID | None = None) -> bool:
        rows = self.store.select(
            ticket_table(is_demo),
            [Eq("ticket_number", ticket_number)],
            columns=["id"],
        )
        return any(row["id"] != ignore_id for row in rows)

    def _backoff(self, attempt: int) -> None:
        if self.config.retry_backoff_seconds:
            time.sleep(self.config.retry_backoff_seconds * (2 ** (attempt - 1)))

    def _claim_number(
        self,
        ticket_number: str,
        is_demo: bool,
        write: Callable[[ParsedTicketNumber], ServiceTicket],
        ignore_id: UUID | None = None,
    ) -> ServiceTicket:
        """
        Run write with ticket_number, moving to the next free number on conflict.

        A number counts as lost when another row already holds it or when the
        store reports a uniqueness violation on write. Lost sequences are
        excluded from the next allocation.

        Raises:
            TicketNumberAllocationError: No write succeeded within the retry budget
        """
        parsed = parse_ticket_number(ticket_number)
        lost: set[int] = set()
        max_attempts = self.config.max_number_attempts

        for attempt in range(1, max_attempts + 1):
            number = format_ticket_number(parsed.initials, parsed.year, parsed.sequence)

            if not self._number_taken(number, is_demo, ignore_id):
                try:
                    return write(parsed)
                except UniqueViolationError:
                    logger.warning(f"Ticket number {number} claimed concurrently (attempt {attempt})")
            else:
                logger.info(f"Ticket number {number} already in use (attempt {attempt})")

            lost.add(parsed.sequence)
            self._backoff(attempt)
            sequence = self.allocator.next_sequence(
                parsed.initials, is_demo, parsed.year, exclude=lost
            )
            parsed = ParsedTicketNumber(parsed.initials, parsed.year, sequence)

        raise TicketNumberAllocationError(max_attempts)

    def create_ticket_record(self, data: TicketRecordCreate, is_demo: bool = False) -> ServiceTicket:
        """
        Insert an approved, numbered ticket.

        If data.ticket_number is already taken, the next free number for the
        same employee and year is used instead.

        Returns:
            Created ticket (its ticket_number may differ from the requested one)

        Raises:
            InvalidTicketNumberError: Malformed ticket number
            TicketNumberAllocationError: Retry budget exhausted
        """
        table = ticket_table(is_demo)

        def insert(parsed: ParsedTicketNumber) -> ServiceTicket:
            now = now_utc()
            row: dict[str, Any] = {
                "ticket_number": format_ticket_number(parsed.initials, parsed.year, parsed.sequence),
                "employee_initials": parsed.initials,
                "year": parsed.year,
                "sequence_number": parsed.sequence,
                "date": data.date,
                "customer_id": data.customer_id,
                "user_id": data.user_id,
                "project_id": data.project_id,
                "location": data.location or "",
                "total_hours": data.total_hours,
                "total_amount": data.total_amount,
                "workflow_status": WorkflowStatus.APPROVED.value,
                "is_discarded": False,
                "created_at": now,
                "updated_at": now,
            }
            if data.approved_by_admin_id:
                row["approved_by_admin_id"] = data.approved_by_admin_id
            if data.header_overrides is not None and not data.header_overrides.is_empty():
                row["header_overrides"] = data.header_overrides.to_storage()
            return ServiceTicket.model_validate(self.store.insert(table, row))

        ticket = self._claim_number(data.ticket_number, is_demo, insert)

        self.audit.log_change(
            entity_type=_ENTITY,
            entity_id=ticket.id,
            action=AuditAction.CREATE,
            changes={"created": ticket.model_dump(mode="json", exclude_none=True)}
        )
        return ticket

    # -------------------------------------------------------------------------
    # Derivation from time entries
    # -------------------------------------------------------------------------

    def _employee_initials(self, user_id: UUID) -> str:
        row = self.store.select_one(
            USERS_TABLE,
            [Eq("id", user_id)],
            columns=["first_name", "last_name"],
        )
        first = ((row or {}).get("first_name") or "").strip()
        last = ((row or {}).get("last_name") or "").strip()
        if first and last:
            return f"{first[0]}{last[0]}".upper()

        logger.warning(
            f"User {user_id} has no full name on file; "
            f"using {self.config.fallback_initials} initials"
        )
        return self.config.fallback_initials

    @staticmethod
    def _with_billing_key(grouping: TicketGrouping, billing_key: str | None) -> TicketGrouping:
        """Fill approver/PO-AFE/CC from billing_key when the caller gave none."""
        if billing_key is None or any((grouping.approver, grouping.po_afe, grouping.cc)):
            return grouping
        approver, po_afe, cc = parse_billing_key(billing_key)
        return grouping.model_copy(update={"approver": approver, "po_afe": po_afe, "cc": cc})

    @staticmethod
    def _match_target(grouping: TicketGrouping) -> MatchTarget:
        return MatchTarget(
            date=grouping.date,
            user_id=grouping.user_id,
            customer_id=grouping.customer_id,
            project_id=grouping.project_id,
            location=grouping.ticket_location,
            grouping_key=grouping.grouping_key,
        )

    @staticmethod
    def _entry_overrides(grouping: TicketGrouping) -> dict[str, str]:
        return {
            **grouping.header_values(),
            "_grouping_key": grouping.grouping_key,
            "_billing_key": grouping.billing_key,
        }

    def _apply(self, current: ServiceTicket, patch: dict[str, Any], is_demo: bool) -> ServiceTicket:
        """
        Write patch to a ticket row and audit the difference.

        Raises:
            TicketUpdateError: The update matched no rows
        """
        rows = self.store.update(
            ticket_table(is_demo),
            [Eq("id", current.id)],
            {**patch, "updated_at": now_utc()},
        )
        if not rows:
            raise TicketUpdateError(
                f"Update of service ticket {current.id} affected no rows; "
                f"it was removed or you are not permitted to change it"
            )

        updated = ServiceTicket.model_validate(rows[0])

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type=_ENTITY,
                entity_id=current.id,
                action=AuditAction.UPDATE,
                changes=changes
            )
        return updated

    def _reconcile(self, match: TicketMatch, grouping: TicketGrouping, is_demo: bool) -> ServiceTicket:
        """Backfill location and, for reused drafts, adopt the entry's header."""
        ticket = match.ticket
        if ticket.is_approved:
            return ticket

        patch: dict[str, Any] = {}
        if match.tier is not MatchTier.EXACT and match.needs_location_backfill and grouping.ticket_location:
            patch["location"] = grouping.ticket_location
        if match.tier is MatchTier.DRAFT_REUSE:
            merged = ticket.header_overrides.merged(self._entry_overrides(grouping))
            if merged != ticket.header_overrides:
                patch["header_overrides"] = merged.to_storage()

        if not patch:
            return ticket
        logger.info(f"Reconciling ticket {ticket.id} matched by {match.tier.value}: {sorted(patch)}")
        return self._apply(ticket, patch, is_demo)

    def get_or_create_ticket(
        self,
        grouping: TicketGrouping,
        is_demo: bool = False,
        billing_key: str | None = None,
    ) -> UUID:
        """
        Ticket id for a billable time entry, creating a draft if none matches.

        Args:
            grouping: The entry's date/user/customer/project/location/header fields
            is_demo: Use the sandbox table
            billing_key: approver::po_afe::cc, used when grouping carries no header fields

        Returns:
            ID of the matched or created ticket

        Raises:
            MissingCustomerError: grouping has no customer
        """
        if grouping.customer_id is None:
            raise MissingCustomerError()

        grouping = self._with_billing_key(grouping, billing_key)

        match = self.matcher.find(self._match_target(grouping), is_demo)
        if match is not None:
            return self._reconcile(match, grouping, is_demo).id

        overrides = HeaderOverrides().merged(self._entry_overrides(grouping))
        now = now_utc()
        row = self.store.insert(ticket_table(is_demo), {
            "date": grouping.date,
            "user_id": grouping.user_id,
            "customer_id": grouping.customer_id,
            "project_id": grouping.project_id,
            "location": grouping.ticket_location,
            "workflow_status": WorkflowStatus.DRAFT.value,
            "employee_initials": self._employee_initials(grouping.user_id),
            "header_overrides": overrides.to_storage(),
            "is_discarded": False,
            "created_at": now,
            "updated_at": now,
        })
        ticket = ServiceTicket.model_validate(row)

        self.audit.log_change(
            entity_type=_ENTITY,
            entity_id=ticket.id,
            action=AuditAction.CREATE,
            changes={"created": ticket.model_dump(mode="json", exclude_none=True)}
        )
        logger.info(f"Created draft ticket {ticket.id} for {grouping.date} key {grouping.grouping_key!r}")
        return ticket.id

    def sync_ticket_header_from_time_entry(
        self,
        grouping: TicketGrouping,
        is_demo: bool = False,
    ) -> ServiceTicket | None:
        """
        Copy a saved entry's header fields onto its open ticket.

        Approved tickets are frozen and never touched.

        Returns:
            The updated ticket, or None when there is nothing to sync
        """
        if grouping.customer_id is None:
            return None

        match = self.matcher.find(self._match_target(grouping), is_demo)
        if match is None:
            return None

        ticket = match.ticket
        if not ticket.is_open:
            logger.debug(f"Ticket {ticket.id} is {ticket.workflow_status.value}; header sync skipped")
            return None

        patch: dict[str, Any] = {}
        merged = ticket.header_overrides.merged(self._entry_overrides(grouping))
        if merged != ticket.header_overrides:
            patch["header_overrides"] = merged.to_storage()
        if match.needs_location_backfill and grouping.ticket_location:
            patch["location"] = grouping.ticket_location

        if not patch:
            return ticket
        return self._apply(ticket, patch, is_demo)

    def _purge(self, intent: PurgeIntent) -> None:
        """Permanently delete a ticket row, expense lines first."""
        self.expenses.delete_by_ticket_id(intent.record_id)
        removed = self.store.delete(intent.table, [Eq("id", intent.record_id)])
        if not removed:
            raise TicketUpdateError(f"Delete of service ticket {intent.record_id} affected no rows")

        self.audit.log_change(
            entity_type=_ENTITY,
            entity_id=intent.record_id,
            action=AuditAction.DELETE,
            changes={"deleted": intent.snapshot, "reason": intent.reason}
        )

    def _remaining_entries(self, grouping: TicketGrouping, po_afe: str, is_demo: bool) -> int:
        """Billable entries left for the grouping's date/user/project and this PO/AFE."""
        po_filter: Filter = In("po_afe", {po_afe, po_afe.strip()})
        if not po_afe.strip():
            po_filter = Or(IsNull("po_afe"), Eq("po_afe", ""))

        return self.store.count(TIME_ENTRIES_TABLE, [
            Eq("date", grouping.date),
            Eq("user_id", grouping.user_id),
            Eq("project_id", grouping.project_id),
            po_filter,
            Eq("billable", True),
            Eq("is_demo", is_demo),
        ])

    @staticmethod
    def _purge_intent(ticket: ServiceTicket, is_demo: bool, reason: str) -> PurgeIntent:
        return PurgeIntent(
            table=ticket_table(is_demo),
            record_id=ticket.id,
            reason=reason,
            snapshot=ticket.model_dump(mode="json"),
        )

    def delete_ticket_if_no_time_entries_for(
        self,
        grouping: TicketGrouping,
        is_demo: bool = False,
    ) -> list[BatchResult[PurgeIntent]]:
        """
        After an entry is deleted, remove its draft ticket if nothing feeds it.

        Counts billable entries left for the same date/user/project/PO-AFE.
        When none remain, unnumbered tickets with the same grouping key (or
        the legacy key when none match) are purged with their expenses.
        Numbered tickets survive on their frozen snapshot.

        Returns:
            One result per purged ticket
        """
        if grouping.customer_id is None:
            return []
        if grouping.project_id is None:
            logger.debug(f"No project on deleted entry for {grouping.date}; ticket cleanup skipped")
            return []

        po_afe = grouping.po_afe or ""
        if self._remaining_entries(grouping, po_afe, is_demo):
            return []

        rows = self.store.select(ticket_table(is_demo), [
            Eq("date", grouping.date),
            Eq("user_id", grouping.user_id),
            Eq("customer_id", grouping.customer_id),
            Eq("project_id", grouping.project_id),
        ])
        tickets = [ServiceTicket.model_validate(row) for row in rows]

        matching = [t for t in tickets if t.grouping_key == grouping.grouping_key]
        if not matching and po_afe.strip() and not self._remaining_entries(grouping, "", is_demo):
            # Blank-PO entries still feed the legacy ticket otherwise
            matching = [t for t in tickets if t.grouping_key == LEGACY_GROUPING_KEY]

        intents = []
        for ticket in matching:
            if ticket.is_approved:
                logger.info(f"Keeping approved ticket {ticket.ticket_number} with no remaining entries")
                continue
            intents.append(self._purge_intent(ticket, is_demo, "no remaining billable time entries"))

        return run_batch(intents, self._purge, "Empty draft cleanup")

    # -------------------------------------------------------------------------
    # Approval and workflow
    # -------------------------------------------------------------------------

    def update_ticket_number(
        self,
        ticket_id: UUID,
        ticket_number: str | None,
        is_demo: bool = False,
        approved_by_admin_id: UUID | None = None,
        snapshot: TicketSnapshot | None = None,
        header_overrides: HeaderOverrides | None = None,
    ) -> ServiceTicket:
        """
        Approve a ticket by numbering it, or unassign its number.

        Assigning approves the ticket, clears rejection metadata and per-entry
        overrides, stores the approver and the frozen snapshot, then purges
        duplicate drafts of the same billing group. A number lost to another
        ticket is replaced by the next free one.

        Unassigning (ticket_number=None) clears only number, sequence and
        year; the ticket stays approved and keeps its approver.

        Raises:
            InvalidTicketNumberError: Malformed ticket number
            TicketNotFoundError: No such ticket
            TicketUpdateError: The update matched no rows
            TicketNumberAllocationError: Retry budget exhausted
        """
        if ticket_number is not None:
            parse_ticket_number(ticket_number)

        current = self._require(ticket_id, is_demo)

        if ticket_number is None:
            return self._apply(
                current,
                {"ticket_number": None, "sequence_number": None, "year": None},
                is_demo,
            )

        base_patch: dict[str, Any] = {
            "workflow_status": WorkflowStatus.APPROVED.value,
            "rejected_at": None,
            "rejection_notes": None,
            "edited_entry_overrides": None,
        }
        if approved_by_admin_id:
            base_patch["approved_by_admin_id"] = approved_by_admin_id
        if snapshot is not None:
            base_patch.update(snapshot.model_dump(exclude_none=True))
        if header_overrides is not None and not header_overrides.is_empty():
            merged = current.header_overrides.merged(header_overrides.to_storage())
            base_patch["header_overrides"] = merged.to_storage()

        def assign(parsed: ParsedTicketNumber) -> ServiceTicket:
            return self._apply(current, {
                **base_patch,
                "ticket_number": format_ticket_number(parsed.initials, parsed.year, parsed.sequence),
                "employee_initials": parsed.initials,
                "year": parsed.year,
                "sequence_number": parsed.sequence,
            }, is_demo)

        updated = self._claim_number(ticket_number, is_demo, assign, ignore_id=ticket_id)
        logger.info(f"Ticket {ticket_id} approved as {updated.ticket_number}")

        self.delete_other_draft_records_for_ticket(ticket_id, is_demo)
        return updated

    def delete_other_draft_records_for_ticket(
        self,
        approved_ticket_id: UUID,
        is_demo: bool = False,
    ) -> list[BatchResult[PurgeIntent]]:
        """
        Purge leftover drafts duplicating an approved ticket.

        Duplicates share date/user/customer/project/location and PO/AFE
        (trimmed, case-insensitive), have no number and are not in the trash.

        Returns:
            One result per purged draft
        """
        approved = self.get_by_id(approved_ticket_id, is_demo)
        if approved is None:
            logger.warning(f"Duplicate cleanup: ticket {approved_ticket_id} not found")
            return []

        filters: list[Filter] = [
            Eq("date", approved.date),
            Eq("user_id", approved.user_id),
            Eq("location", approved.location),
            IsNull("ticket_number"),
            not_discarded(),
        ]
        for column, value in (("customer_id", approved.customer_id), ("project_id", approved.project_id)):
            filters.append(Eq(column, value) if value is not None else IsNull(column))

        rows = self.store.select(ticket_table(is_demo), filters)
        duplicates = [
            t for t in (ServiceTicket.model_validate(row) for row in rows)
            if t.id != approved.id and same_po_afe(t.grouping_key, approved.grouping_key)
        ]
        if not duplicates:
            return []

        logger.info(f"Removing {len(duplicates)} duplicate draft(s) of ticket {approved.ticket_number or approved.id}")
        intents = [
            self._purge_intent(t, is_demo, f"duplicate of approved ticket {approved.id}")
            for t in duplicates
        ]
        return run_batch(intents, self._purge, "Duplicate draft cleanup")

    def update_workflow_status(
        self,
        ticket_id: UUID,
        workflow_status: WorkflowStatus | str,
        is_demo: bool = False,
        rejection_notes: str | None = None,
    ) -> ServiceTicket:
        """
        Set a ticket's workflow status.

        Rejecting stamps rejected_at and stores the note; any other status
        clears the note.

        Raises:
            TicketNotFoundError: No such ticket
            TicketUpdateError: The update matched no rows
        """
        status = WorkflowStatus(workflow_status)
        current = self._require(ticket_id, is_demo)

        patch: dict[str, Any] = {"workflow_status": status.value, "rejection_notes": None}
        if status is WorkflowStatus.REJECTED:
            patch["rejected_at"] = now_utc()
            patch["rejection_notes"] = rejection_notes

        return self._apply(current, patch, is_demo)

    def _advance(
        self,
        ticket_id: UUID,
        target: WorkflowStatus,
        is_demo: bool,
        extra: dict[str, Any],
    ) -> ServiceTicket:
        """Move an approved ticket forward; never backwards."""
        current = self._require(ticket_id, is_demo)

        if not current.is_approved:
            raise InvalidTransitionError(
                f"Ticket {ticket_id} has no ticket number; approve it before {target.value}"
            )
        if current.workflow_status.rank > target.rank:
            raise InvalidTransitionError(
                f"Ticket {ticket_id} cannot move from {current.workflow_status.value} back to {target.value}"
            )

        return self._apply(current, {"workflow_status": target.value, **extra}, is_demo)

    def mark_pdf_exported(self, ticket_id: UUID, pdf_url: str | None = None, is_demo: bool = False) -> ServiceTicket:
        return self._advance(ticket_id, WorkflowStatus.PDF_EXPORTED, is_demo, {
            "pdf_exported_at": now_utc(),
            "pdf_url": pdf_url,
        })

    def mark_sent_to_cnrl(self, ticket_id: UUID, is_demo: bool = False) -> ServiceTicket:
        return self._advance(ticket_id, WorkflowStatus.SENT_TO_CNRL, is_demo, {
            "sent_to_cnrl_at": now_utc(),
        })

    def mark_cnrl_approved(self, ticket_id: UUID, is_demo: bool = False) -> ServiceTicket:
        return self._advance(ticket_id, WorkflowStatus.CNRL_APPROVED, is_demo, {
            "cnrl_approved_at": now_utc(),
        })

    def mark_submitted_to_cnrl(
        self,
        ticket_id: UUID,
        notes: str | None = None,
        is_demo: bool = False,
    ) -> ServiceTicket:
        return self._advance(ticket_id, WorkflowStatus.SUBMITTED_TO_CNRL, is_demo, {
            "submitted_to_cnrl_at": now_utc(),
            "cnrl_notes": notes,
        })

    # -------------------------------------------------------------------------
    # Header snapshot
    # -------------------------------------------------------------------------

    def update_header_overrides(
        self,
        ticket_id: UUID,
        overrides: HeaderOverrides,
        is_demo: bool = False,
    ) -> ServiceTicket:
        """
        Replace a ticket's header snapshot.

        The stored grouping and billing keys are kept unless overrides
        carries its own.

        Raises:
            TicketFrozenError: Ticket is numbered and already has a snapshot
        """
        current = self._require(ticket_id, is_demo)
        if current.is_approved and not current.header_overrides.is_empty():
            raise TicketFrozenError(
                f"Ticket {current.ticket_number} is approved; its header snapshot is frozen"
            )

        replacement = overrides.model_copy(update={
            "grouping_key": overrides.grouping_key or current.header_overrides.grouping_key,
            "billing_key": overrides.billing_key or current.header_overrides.billing_key,
        })
        return self._apply(current, {"header_overrides": replacement.to_storage()}, is_demo)

    def update_open_tickets_with_customer_info(
        self,
        customer_id: UUID,
        customer: CustomerSnapshot,
    ) -> list[BatchResult[ServiceTicket]]:
        """
        Push edited customer details into every open ticket of the customer.

        Covers both the live and sandbox tables. Numbered tickets keep their
        snapshot.

        Returns:
            One result per ticket touched
        """
        overrides = customer.to_overrides()
        if not overrides:
            return []

        results: list[BatchResult[ServiceTicket]] = []
        for is_demo in (False, True):
            rows = self.store.select(ticket_table(is_demo), [
                Eq("customer_id", customer_id),
                In("workflow_status", [WorkflowStatus.DRAFT.value, WorkflowStatus.REJECTED.value]),
                IsNull("ticket_number"),
            ])
            tickets = [t for t in (ServiceTicket.model_validate(row) for row in rows) if t.is_open]

            def refresh(ticket: ServiceTicket, is_demo: bool = is_demo) -> None:
                merged = ticket.header_overrides.merged(overrides)
                self._apply(ticket, {"header_overrides": merged.to_storage()}, is_demo)

            results.extend(run_batch(tickets, refresh, f"Customer info sync ({ticket_table(is_demo)})"))
        return results

    # -------------------------------------------------------------------------
    # Trash and hard delete
    # -------------------------------------------------------------------------

    def discard_ticket(self, ticket_id: UUID, is_demo: bool = False) -> ServiceTicket:
        """Move a ticket to the trash. Its number stays reserved."""
        current = self._require(ticket_id, is_demo)
        return self._apply(current, {"is_discarded": True}, is_demo)

    def restore_ticket(self, ticket_id: UUID, is_demo: bool = False) -> ServiceTicket:
        """Bring a ticket back from the trash."""
        current = self._require(ticket_id, is_demo)
        return self._apply(current, {"is_discarded": False, "restored_at": now_utc()}, is_demo)

    def delete_permanently(self, ticket_id: UUID, is_demo: bool = False) -> list[BatchResult]:
        """
        Hard-delete a ticket and its expense lines.

        Expense lines go first, each on its own; a failed line is logged and
        skipped. Time entries are never touched, so the history they record
        survives the ticket.

        Returns:
            Per-line results of the expense purge

        Raises:
            TicketNotFoundError: No such ticket
            TicketUpdateError: The ticket row could not be deleted
        """
        ticket = self._require(ticket_id, is_demo)

        lines = self.expenses.get_by_ticket_id(ticket_id)
        results = run_batch(lines, lambda line: self.expenses.delete(line.id), "Expense purge")

        removed = self.store.delete(ticket_table(is_demo), [Eq("id", ticket_id)])
        if not removed:
            raise TicketUpdateError(f"Delete of service ticket {ticket_id} affected no rows")

        self.audit.log_change(
            entity_type=_ENTITY,
            entity_id=ticket_id,
            action=AuditAction.DELETE,
            changes={"deleted": ticket.model_dump(mode="json")}
        )
        logger.info(f"Ticket {ticket.ticket_number or ticket_id} permanently deleted")
        return results
