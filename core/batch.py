"""
Best-effort batch execution.

Cleanup work that follows a primary action (purging duplicate drafts after
an approval, removing expense lines before a hard delete) must not undo or
block that action. Each item runs on its own; a failure is logged and
recorded, and the batch moves on.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, TypeVar
from uuid import UUID

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PurgeIntent:
    """A row scheduled for permanent deletion, and why."""

    table: str
    record_id: UUID
    reason: str
    snapshot: dict = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class BatchResult(Generic[T]):
    item: T
    succeeded: bool
    error: str | None = None


def run_batch(items: Iterable[T], action: Callable[[T], object], label: str) -> list[BatchResult[T]]:
    """
    Apply action to each item, collecting per-item outcomes.

    Args:
        items: Work items, processed sequentially in order
        action: Called once per item; any exception marks that item failed
        label: Batch name for log messages

    Returns:
        One BatchResult per item, in input order.
    """
    results: list[BatchResult[T]] = []
    for item in items:
        try:
            action(item)
        except Exception as e:
            logger.exception(f"{label}: failed for {item}")
            results.append(BatchResult(item, False, str(e)))
        else:
            results.append(BatchResult(item, True))

    failed = sum(1 for r in results if not r.succeeded)
    if failed:
        logger.warning(f"{label}: {failed} of {len(results)} item(s) failed")
    return results
