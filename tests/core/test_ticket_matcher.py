"""Tests for TicketMatcher tiered lookup."""

import pytest
from datetime import date
from uuid import UUID

from core.ticket_matcher import MatchTarget, MatchTier, TicketMatcher

EMPLOYEE_ID = UUID("00000000-0000-0000-0000-0000000000e1")
CUSTOMER_ID = UUID("00000000-0000-0000-0000-0000000000c1")
PROJECT_ID = UUID("00000000-0000-0000-0000-0000000000a1")
DAY = date(2026, 2, 10)


@pytest.fixture
def matcher(store):
    return TicketMatcher(store)


@pytest.fixture
def target():
    return MatchTarget(
        date=DAY,
        user_id=EMPLOYEE_ID,
        customer_id=CUSTOMER_ID,
        project_id=PROJECT_ID,
        location="Site A",
        grouping_key="PO-1",
    )


def add(store, key=None, table="service_tickets", **fields):
    row = {
        "date": DAY,
        "user_id": EMPLOYEE_ID,
        "customer_id": CUSTOMER_ID,
        "project_id": PROJECT_ID,
        "location": "Site A",
        "workflow_status": "draft",
        "is_discarded": False,
        "header_overrides": {"_grouping_key": key} if key else {},
    }
    row.update(fields)
    return store.seed(table, **row)


class TestExactTier:
    """Location and key both match."""

    def test_picks_key_match_among_candidates(self, store, matcher, target):
        add(store, key="PO-2")
        wanted = add(store, key="PO-1")

        match = matcher.find(target)

        assert match.ticket.id == wanted["id"]
        assert match.tier == MatchTier.EXACT

    def test_key_falls_back_to_po_afe(self, store, matcher, target):
        """Rows without a stored key derive it from po_afe."""
        wanted = add(store, header_overrides={"po_afe": " PO-1 "})
        add(store, key="PO-2")

        assert matcher.find(target).ticket.id == wanted["id"]

    def test_lone_candidate_accepted_without_key_match(self, store, matcher, target):
        only = add(store, key="PO-2")

        match = matcher.find(target)

        assert match.ticket.id == only["id"]
        assert match.tier == MatchTier.EXACT

    def test_prefers_ticket_outside_trash(self, store, matcher, target):
        add(store, key="PO-1", is_discarded=True)
        active = add(store, key="PO-1")

        assert matcher.find(target).ticket.id == active["id"]

    def test_key_comparison_is_case_sensitive(self, store, matcher, target):
        add(store, key="po-1")
        add(store, key="PO-3")

        match = matcher.find(target)

        assert match.tier == MatchTier.DRAFT_REUSE


class TestRelaxedTiers:
    """Fallbacks when no location-filtered row matches."""

    def test_location_relaxed(self, store, matcher, target):
        moved = add(store, key="PO-1", location="Site B")

        match = matcher.find(target)

        assert match.ticket.id == moved["id"]
        assert match.tier == MatchTier.LOCATION_RELAXED
        assert match.needs_location_backfill is False

    def test_legacy_row_without_location(self, store, matcher, target):
        legacy = add(store, key="PO-9", location="")

        match = matcher.find(target)

        assert match.ticket.id == legacy["id"]
        assert match.tier == MatchTier.LEGACY
        assert match.needs_location_backfill is True

    def test_draft_reuse_prefers_same_location(self, store, matcher, target):
        add(store, key="PO-7", location="Site B")
        add(store, key="PO-8")
        add(store, key="PO-9")

        match = matcher.find(target)

        assert match.tier == MatchTier.DRAFT_REUSE
        assert match.ticket.location == "Site A"

    def test_draft_reuse_at_other_location(self, store, matcher, target):
        elsewhere = add(store, key="PO-8", location="Site B")

        match = matcher.find(target)

        assert match.ticket.id == elsewhere["id"]
        assert match.tier == MatchTier.DRAFT_REUSE

    def test_rejected_ticket_is_reusable(self, store, matcher, target):
        rejected = add(store, key="PO-9", location="Site B", workflow_status="rejected")

        match = matcher.find(target)

        assert match.ticket.id == rejected["id"]
        assert match.tier == MatchTier.DRAFT_REUSE

    def test_approved_ticket_is_never_reused(self, store, matcher, target):
        add(store, key="PO-9", location="Site B", ticket_number="DB_26001", workflow_status="approved")

        assert matcher.find(target) is None

    def test_discarded_draft_is_not_reused(self, store, matcher, target):
        add(store, key="PO-9", location="Site B", is_discarded=True)

        assert matcher.find(target) is None


class TestScope:
    """Candidate selection."""

    def test_empty_table_returns_none(self, matcher, target):
        assert matcher.find(target) is None

    def test_other_day_is_ignored(self, store, matcher, target):
        add(store, key="PO-1", date=date(2026, 2, 11))

        assert matcher.find(target) is None

    def test_demo_table_is_separate(self, store, matcher, target):
        add(store, key="PO-1", table="service_tickets_demo")

        assert matcher.find(target) is None
        assert matcher.find(target, is_demo=True).tier == MatchTier.EXACT

    def test_without_project_any_project_matches(self, store, matcher, target):
        from dataclasses import replace

        other_project = add(store, key="PO-1", project_id=UUID(int=7))

        match = matcher.find(replace(target, project_id=None))

        assert match.ticket.id == other_project["id"]
