"""Propagate the acting user's identity through ticket operations using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Get the acting user's ID.

    Raises RuntimeError if no user context is set. Audited mutations
    must always be attributable, so a missing context is a bug.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. Ticket mutations must run inside "
            "user_context() so they can be attributed in the audit log."
        )
    return user_id


def set_current_user_id(user_id: UUID) -> None:
    """Set the acting user's ID."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage
    between requests.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Temporarily act as a user.

    The Postgres client reads this for row-level security and the audit
    logger reads it for attribution.

    Example:
        with user_context(admin_id):
            tickets.update_ticket_number(ticket_id, "DB_26001")
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
