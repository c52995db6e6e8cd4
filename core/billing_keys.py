"""
Billing key codec.

Tickets are grouped by PO/AFE. The grouping key is the trimmed PO/AFE alone,
so a differing approver or CC never splits a ticket while a differing PO/AFE
always does. The billing key (approver::po_afe::cc) is kept for display and
as a secondary match.

Empty values encode as the sentinel "_". Case is preserved: "PO-1" and
"po-1" are different grouping keys. Every function here is total and
re-encoding an already normalized key returns it unchanged.
"""

SENTINEL = "_"
SEPARATOR = "::"

# Grouping key of tickets created without any PO/AFE
LEGACY_GROUPING_KEY = SENTINEL


def normalize_field(value: str | None) -> str:
    """Trim a header field; empty or missing becomes the sentinel."""
    cleaned = (value or "").strip()
    return cleaned or SENTINEL


def build_grouping_key(po_afe: str | None) -> str:
    """Grouping key for a PO/AFE value."""
    return normalize_field(po_afe)


def build_billing_key(approver: str | None, po_afe: str | None, cc: str | None) -> str:
    """Billing key for an approver/PO-AFE/CC combination."""
    return SEPARATOR.join(normalize_field(v) for v in (approver, po_afe, cc))


def parse_billing_key(key: str | None) -> tuple[str, str, str]:
    """
    Split a billing key into (approver, po_afe, cc).

    Sentinels decode to "". Missing trailing parts decode as "".
    """
    parts = (key or "").split(SEPARATOR)
    parts = (parts + [SENTINEL] * 3)[:3]
    return tuple("" if normalize_field(p) == SENTINEL else p.strip() for p in parts)


def same_po_afe(a: str | None, b: str | None) -> bool:
    """Trimmed, case-insensitive PO/AFE comparison used for duplicate cleanup."""
    return build_grouping_key(a).lower() == build_grouping_key(b).lower()
