"""Typed exceptions for service ticket failures."""


class ServiceTicketError(Exception):
    """Base class for service ticket errors."""


class MissingCustomerError(ServiceTicketError, ValueError):
    """
    A ticket was requested without a customer.

    Tickets only exist in a billable project/customer context, so this is
    raised before the store is touched.
    """

    def __init__(self):
        super().__init__(
            "Cannot create service ticket without a customer. "
            "Assign a project to the time entries first."
        )


class InvalidTicketNumberError(ServiceTicketError, ValueError):
    """Ticket number does not have the INITIALS_YYNNN shape."""


class TicketNotFoundError(ServiceTicketError, ValueError):
    """No ticket row with the given id."""

    def __init__(self, ticket_id):
        self.ticket_id = ticket_id
        super().__init__(f"Service ticket {ticket_id} not found")


class TicketUpdateError(ServiceTicketError):
    """
    An update matched zero rows.

    Usually a row-level-security denial rather than a missing row. Raised so
    the caller never believes a workflow change happened when it did not.
    """


class TicketFrozenError(ServiceTicketError, ValueError):
    """Attempt to change the snapshot of an approved ticket."""


class InvalidTransitionError(ServiceTicketError, ValueError):
    """Workflow status change not allowed from the current status."""


class TicketNumberAllocationError(ServiceTicketError):
    """No free ticket number could be claimed within the retry budget."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Failed to find available ticket number after {attempts} attempts"
        )
