"""Tests for the billing key codec."""

from core.billing_keys import (
    LEGACY_GROUPING_KEY,
    build_billing_key,
    build_grouping_key,
    parse_billing_key,
    same_po_afe,
)


class TestGroupingKey:
    """Tests for build_grouping_key()."""

    def test_trims(self):
        assert build_grouping_key("  PO-1 ") == "PO-1"

    def test_empty_is_sentinel(self):
        assert build_grouping_key("") == "_"
        assert build_grouping_key(None) == "_"
        assert build_grouping_key("   ") == LEGACY_GROUPING_KEY

    def test_preserves_case(self):
        assert build_grouping_key("po-1") != build_grouping_key("PO-1")

    def test_idempotent(self):
        key = build_grouping_key(" AFE 7781 ")
        assert build_grouping_key(key) == key


class TestBillingKey:
    """Tests for build_billing_key() and parse_billing_key()."""

    def test_joins_fields(self):
        assert build_billing_key("J. Smith", "PO-1", "CC-9") == "J. Smith::PO-1::CC-9"

    def test_missing_fields_use_sentinel(self):
        assert build_billing_key(None, "PO-1", " ") == "_::PO-1::_"

    def test_parse_decodes_sentinels(self):
        assert parse_billing_key("_::PO-1::_") == ("", "PO-1", "")

    def test_parse_pads_missing_parts(self):
        assert parse_billing_key("J. Smith") == ("J. Smith", "", "")
        assert parse_billing_key(None) == ("", "", "")

    def test_parse_reverses_build(self):
        assert parse_billing_key(build_billing_key("A", "B", "C")) == ("A", "B", "C")


class TestSamePoAfe:
    """Tests for same_po_afe()."""

    def test_case_and_whitespace_insensitive(self):
        assert same_po_afe(" po-1", "PO-1 ")

    def test_different_values(self):
        assert not same_po_afe("PO-1", "PO-2")

    def test_empty_values_match(self):
        assert same_po_afe(None, "")
