"""
Ticket number allocation.

Ticket numbers look like DB_26001: employee initials, two-digit year, and a
sequence padded to three digits. The allocator scans the sequences already
used by an employee in a year and hands out the first gap at or above the
employee's reserved floor.

Every row that ever held a number keeps blocking it, including rows in the
trash, so a number is never issued twice.

Allocation is read-then-decide. Two callers can see the same free number;
the store's uniqueness constraint rejects the loser and the service retries.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from clients.filters import Eq, IsNull, Not, OrderBy
from clients.record_store import RecordStore
from core.config import TicketConfig
from core.exceptions import InvalidTicketNumberError
from utils.timezone import now_utc, two_digit_year

logger = logging.getLogger(__name__)

_TICKET_NUMBER_RE = re.compile(r"^([A-Z]+)_(\d{2})(\d{3,})$")

TICKETS_TABLE = "service_tickets"
DEMO_TICKETS_TABLE = "service_tickets_demo"


def ticket_table(is_demo: bool) -> str:
    """Production or sandbox ticket table. Both share one schema."""
    return DEMO_TICKETS_TABLE if is_demo else TICKETS_TABLE


@dataclass(frozen=True)
class ParsedTicketNumber:
    initials: str
    year: int
    sequence: int


def format_ticket_number(initials: str, year: int, sequence: int) -> str:
    """Build INITIALS_YYNNN."""
    return f"{initials.strip().upper()}_{year % 100:02d}{sequence:03d}"


def parse_ticket_number(ticket_number: str) -> ParsedTicketNumber:
    """
    Split a ticket number into its parts.

    Raises:
        InvalidTicketNumberError: If the number is not INITIALS_YYNNN
    """
    match = _TICKET_NUMBER_RE.match((ticket_number or "").strip().upper())
    if match is None:
        raise InvalidTicketNumberError(
            f"Invalid ticket number {ticket_number!r}; expected INITIALS_YYNNN"
        )
    initials, year, sequence = match.groups()
    return ParsedTicketNumber(initials=initials, year=int(year), sequence=int(sequence))


def first_free_sequence(used: Iterable[int], min_start: int = 1) -> int:
    """Smallest integer >= min_start not in used."""
    taken = set(used)
    candidate = max(min_start, 1)
    while candidate in taken:
        candidate += 1
    return candidate


class TicketNumberAllocator:
    """
    Computes the next assignable ticket number for an employee.

    Usage:
        allocator = TicketNumberAllocator(store, TicketConfig(reserved_sequences={"HV": {26: 49}}))
        allocator.next_ticket_number("HV")  # "HV_26050" on an empty table
    """

    def __init__(
        self,
        store: RecordStore,
        config: TicketConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.config = config or TicketConfig()
        self.clock = clock

    def current_year(self) -> int:
        return two_digit_year(self.clock())

    def used_sequences(self, initials: str, year: int, is_demo: bool = False) -> set[int]:
        """Every sequence held by initials/year, discarded tickets included."""
        rows = self.store.select(
            ticket_table(is_demo),
            [
                Eq("employee_initials", initials.upper()),
                Eq("year", year),
                Not(IsNull("sequence_number")),
            ],
            columns=["sequence_number"],
            order_by=[OrderBy("sequence_number")],
        )
        return {int(row["sequence_number"]) for row in rows}

    def next_sequence(
        self,
        initials: str,
        is_demo: bool = False,
        year: int | None = None,
        exclude: Iterable[int] = (),
    ) -> int:
        """
        First free sequence above the reserved range.

        Args:
            initials: Employee initials
            is_demo: Scan the sandbox table instead of the live one
            year: Two-digit year (defaults to the current year)
            exclude: Extra sequences to treat as taken (numbers just lost to a race)
        """
        initials = initials.strip().upper()
        if year is None:
            year = self.current_year()

        min_start = self.config.last_reserved(initials, year) + 1
        used = self.used_sequences(initials, year, is_demo) | set(exclude)
        sequence = first_free_sequence(used, min_start)

        logger.info(
            f"Next ticket sequence for {initials}/{year:02d} "
            f"({'demo' if is_demo else 'live'}): {sequence} "
            f"(floor {min_start}, {len(used)} in use)"
        )
        return sequence

    def next_ticket_number(self, initials: str, is_demo: bool = False, year: int | None = None) -> str:
        """Next free INITIALS_YYNNN for the employee."""
        if year is None:
            year = self.current_year()
        sequence = self.next_sequence(initials, is_demo, year)
        return format_ticket_number(initials, year, sequence)
