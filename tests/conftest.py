"""Shared test fixtures for the service ticket test suite."""

import pytest
from datetime import date, datetime, timezone
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.user_context import user_context, clear_current_user_id

from fakes import InMemoryRecordStore


# =============================================================================
# TEST CONSTANTS
# =============================================================================

# Acting user for audited mutations
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Admin who approves tickets
TEST_ADMIN_ID = UUID("00000000-0000-0000-0000-000000000002")

# Employee whose time entries feed tickets (Dana Brooks -> "DB")
EMPLOYEE_ID = UUID("00000000-0000-0000-0000-0000000000e1")
CUSTOMER_ID = UUID("00000000-0000-0000-0000-0000000000c1")
PROJECT_ID = UUID("00000000-0000-0000-0000-0000000000a1")

TICKET_DATE = date(2026, 2, 10)
FIXED_NOW = datetime(2026, 2, 11, 15, 30, tzinfo=timezone.utc)

TICKET_TABLES = ("service_tickets", "service_tickets_demo")


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The acting test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Run the test with the acting user set."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# STORE AND SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def store():
    """In-memory store with the ticket tables' uniqueness constraints."""
    unique = {
        table: [("ticket_number",), ("employee_initials", "year", "sequence_number")]
        for table in TICKET_TABLES
    }
    store = InMemoryRecordStore(unique=unique)
    store.seed("users", id=EMPLOYEE_ID, first_name="Dana", last_name="Brooks")
    return store


@pytest.fixture
def audit(store):
    from core.audit import AuditLogger
    return AuditLogger(store)


@pytest.fixture
def ticket_config():
    from core.config import TicketConfig
    return TicketConfig(reserved_sequences={"HV": {26: 49}}, max_number_attempts=5)


@pytest.fixture
def allocator(store, ticket_config):
    """Allocator pinned to 2026."""
    from core.ticket_numbers import TicketNumberAllocator
    return TicketNumberAllocator(store, ticket_config, clock=lambda: FIXED_NOW)


@pytest.fixture
def expense_service(store, audit):
    from core.services.expense_service import ExpenseService
    return ExpenseService(store, audit)


@pytest.fixture
def ticket_service(store, audit, allocator, expense_service):
    from core.services.service_ticket_service import ServiceTicketService
    return ServiceTicketService(store, audit, allocator=allocator, expenses=expense_service)


@pytest.fixture
def grouping():
    """Grouping of a billable entry at Site A on PO-1."""
    from core.models import TicketGrouping
    return TicketGrouping(
        date=TICKET_DATE,
        user_id=EMPLOYEE_ID,
        customer_id=CUSTOMER_ID,
        project_id=PROJECT_ID,
        location="Site A",
        approver="J. Smith",
        po_afe="PO-1",
        cc="CC-9",
    )
