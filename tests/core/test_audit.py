"""Tests for the ticket audit trail."""

import pytest
from uuid import uuid4


class TestAuditAction:
    """Tests for AuditAction enum."""

    def test_has_create_update_delete(self):
        """AuditAction has required values."""
        from core.audit import AuditAction

        assert AuditAction.CREATE.value == "create"
        assert AuditAction.UPDATE.value == "update"
        assert AuditAction.DELETE.value == "delete"


class TestComputeChanges:
    """Tests for compute_changes utility function."""

    def test_detects_changed_fields(self):
        """Different values for same key detected."""
        from core.audit import compute_changes

        old = {"workflow_status": "draft", "location": "Site A"}
        new = {"workflow_status": "approved", "location": "Site A"}

        changes = compute_changes(old, new)

        assert changes == {"workflow_status": {"old": "draft", "new": "approved"}}

    def test_detects_added_and_removed_fields(self):
        from core.audit import compute_changes

        changes = compute_changes({"pdf_url": "a.pdf"}, {"ticket_number": "DB_26001"})

        assert changes["pdf_url"] == {"old": "a.pdf", "new": None}
        assert changes["ticket_number"] == {"old": None, "new": "DB_26001"}

    def test_ignores_updated_at_by_default(self):
        """updated_at changes on every write and is not interesting."""
        from core.audit import compute_changes

        assert compute_changes({"updated_at": "t1"}, {"updated_at": "t2"}) == {}

    def test_custom_exclusions(self):
        from core.audit import compute_changes

        changes = compute_changes(
            {"a": 1, "b": 1}, {"a": 2, "b": 2}, exclude_fields={"a"}
        )

        assert list(changes) == ["b"]


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_logs_with_current_user(self, store, audit, as_test_user):
        from core.audit import AuditAction

        entity_id = uuid4()
        audit.log_change("service_ticket", entity_id, AuditAction.CREATE, {"created": {"location": "Site A"}})

        [entry] = store.rows("audit_log")
        assert entry["user_id"] == as_test_user
        assert entry["entity_id"] == entity_id
        assert entry["action"] == "create"
        assert entry["changes"] == {"created": {"location": "Site A"}}

    def test_explicit_user_overrides_context(self, store, audit):
        from core.audit import AuditAction

        admin = uuid4()
        audit.log_change("service_ticket", uuid4(), AuditAction.DELETE, {}, user_id=admin)

        assert store.rows("audit_log")[0]["user_id"] == admin

    def test_requires_user_context(self, audit):
        """Unattributed changes are a bug."""
        from core.audit import AuditAction

        with pytest.raises(RuntimeError, match="No user context"):
            audit.log_change("service_ticket", uuid4(), AuditAction.UPDATE, {})

    def test_history_is_per_entity(self, audit, as_test_user):
        from core.audit import AuditAction

        mine, other = uuid4(), uuid4()
        audit.log_change("service_ticket", mine, AuditAction.CREATE, {})
        audit.log_change("service_ticket", mine, AuditAction.UPDATE, {"location": {"old": "", "new": "Site A"}})
        audit.log_change("service_ticket", other, AuditAction.CREATE, {})

        history = audit.get_entity_history("service_ticket", mine)

        assert len(history) == 2
        assert {h["action"] for h in history} == {"create", "update"}
