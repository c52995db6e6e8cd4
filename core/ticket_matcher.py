"""
Ticket matching.

Finds the existing ticket a time entry belongs to. Users correct PO/AFE,
approver and location while a ticket is still a draft, and older rows were
written before location or the stored grouping key existed, so matching
relaxes in tiers instead of demanding an exact hit:

1. EXACT: same date/user/customer/project/location and grouping key.
   A lone location candidate is accepted even without a key match.
2. LOCATION_RELAXED: same grouping key at any location.
3. LEGACY: a candidate that never had a location.
4. DRAFT_REUSE: an unnumbered draft/rejected candidate, location match
   preferred.

Approved tickets are never repurposed by tier 4.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID

from clients.filters import Eq, Filter
from clients.record_store import RecordStore
from core.billing_keys import build_grouping_key
from core.models import ServiceTicket
from core.ticket_numbers import ticket_table

logger = logging.getLogger(__name__)


class MatchTier(str, Enum):
    """How a ticket was matched."""

    EXACT = "exact"
    LOCATION_RELAXED = "location_relaxed"
    LEGACY = "legacy"
    DRAFT_REUSE = "draft_reuse"


@dataclass(frozen=True)
class MatchTarget:
    """What to look for."""

    date: date
    user_id: UUID
    customer_id: UUID
    project_id: UUID | None = None
    location: str = ""
    grouping_key: str = build_grouping_key(None)


@dataclass(frozen=True)
class TicketMatch:
    ticket: ServiceTicket
    tier: MatchTier

    @property
    def needs_location_backfill(self) -> bool:
        """Matched row has no location yet."""
        return not self.ticket.location


def _prefer_active(tickets: list[ServiceTicket]) -> ServiceTicket | None:
    """First non-discarded ticket, else the first ticket."""
    for ticket in tickets:
        if not ticket.is_discarded:
            return ticket
    return tickets[0] if tickets else None


class TicketMatcher:
    """Locates the ticket row for a date/user/customer/project/location/key."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _candidates(self, target: MatchTarget, is_demo: bool, with_location: bool) -> list[ServiceTicket]:
        filters: list[Filter] = [
            Eq("date", target.date),
            Eq("user_id", target.user_id),
            Eq("customer_id", target.customer_id),
        ]
        if target.project_id is not None:
            filters.append(Eq("project_id", target.project_id))
        if with_location:
            filters.append(Eq("location", target.location))

        rows = self.store.select(ticket_table(is_demo), filters)
        return [ServiceTicket.model_validate(row) for row in rows]

    def find(self, target: MatchTarget, is_demo: bool = False) -> TicketMatch | None:
        """
        Find the ticket for target.

        Returns:
            The match and the tier that produced it, or None when the caller
            should create a new ticket.
        """
        key = build_grouping_key(target.grouping_key)

        located = self._candidates(target, is_demo, with_location=True)
        hit = _prefer_active([t for t in located if t.grouping_key == key])
        if hit is not None:
            return TicketMatch(hit, MatchTier.EXACT)
        if len(located) == 1:
            # TODO: confirm with billing whether a lone candidate with a different
            # PO/AFE should really absorb the entry; kept as-is until then.
            logger.debug(
                f"Accepting lone candidate {located[0].id} despite key mismatch "
                f"({located[0].grouping_key!r} != {key!r})"
            )
            return TicketMatch(located[0], MatchTier.EXACT)

        everywhere = self._candidates(target, is_demo, with_location=False)
        hit = _prefer_active([t for t in everywhere if t.grouping_key == key])
        if hit is not None:
            return TicketMatch(hit, MatchTier.LOCATION_RELAXED)

        hit = _prefer_active([t for t in everywhere if not t.location])
        if hit is not None:
            return TicketMatch(hit, MatchTier.LEGACY)

        open_tickets = [t for t in everywhere if t.is_open and not t.is_discarded]
        same_place = [t for t in open_tickets if t.location == target.location]
        if same_place or open_tickets:
            hit = (same_place or open_tickets)[0]
            logger.debug(f"Reusing open ticket {hit.id} for key {key!r}")
            return TicketMatch(hit, MatchTier.DRAFT_REUSE)

        return None
