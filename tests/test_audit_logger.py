"""
Tests for the reconciliation audit trail.
"""

import json

import pytest

from parish_ledger.models import AuditAction, AuditEntry
from parish_ledger.utils import AuditLogger


@pytest.fixture
def audit_trail():
    audit = AuditLogger("trail")
    audit.log(AuditEntry(action=AuditAction.RECONCILED, statement_id="s1", transaction_ids=["e1"]))
    audit.log(AuditEntry(action=AuditAction.UNRECONCILED, statement_id="s1", transaction_ids=["e1"]))
    audit.log(AuditEntry(
        action=AuditAction.RECONCILED,
        statement_id="s2",
        transaction_ids=["i1"],
        success=False,
        error_message="connection lost",
    ))
    return audit


class TestAuditLogger:

    def test_filters(self, audit_trail):
        assert len(audit_trail.get_entries(action_filter="reconciled")) == 2
        assert [e.action for e in audit_trail.get_entries(statement_id="s1")] == [
            AuditAction.RECONCILED,
            AuditAction.UNRECONCILED,
        ]
        assert len(audit_trail.get_entries(action_filter="reconciled", success_only=True)) == 1

    def test_summary(self, audit_trail):
        assert audit_trail.summary() == {
            "total_entries": 3,
            "success_count": 2,
            "error_count": 1,
            "action_counts": {"reconciled": 2, "unreconciled": 1},
            "statements_touched": 2,
        }

    def test_export(self, audit_trail, tmp_path):
        path = audit_trail.export_to_file(tmp_path / "out" / "audit.json")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["session_id"] == "trail"
        assert data["total_entries"] == 3
        assert data["entries"][2]["error_message"] == "connection lost"
