"""
Tests for the HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from parish_ledger.main import app, get_orchestrator
from parish_ledger.main import settings as app_settings
from parish_ledger.reconciliation import ReconciliationOrchestrator

from conftest import NonBatchStore


@pytest.fixture
def orchestrator(store, settings, audit):
    return ReconciliationOrchestrator(store, settings=settings, audit=audit)


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def link_directly(store, collection, txn_id, statement_id):
    """Write a back-reference without going through the coordinator."""
    store._collections[collection][txn_id].update({
        "isReconciled": True,
        "reconciledBankStatementId": statement_id,
    })


def reconcile(client, statement_id, *refs):
    body = {"transactions": [{"id": txn_id, "type": kind} for kind, txn_id in refs]}
    return client.post(f"/api/statements/{statement_id}/reconcile", json=body)


class TestReadEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["environment"] == app_settings.app_env

    def test_debug_flag_comes_from_settings(self):
        assert app.debug is app_settings.app_debug

    def test_list_statements(self, client):
        response = client.get("/api/statements")
        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == ["stmt_debit", "stmt_credit"]
        assert response.json()[0]["postingDate"] == "2024-03-01"

    def test_list_filters(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        unreconciled = client.get("/api/statements", params={"status": "unreconciled"}).json()
        reconciled = client.get("/api/statements", params={"status": "reconciled"}).json()
        building = client.get("/api/statements", params={"account_type": "Building"}).json()

        assert [s["id"] for s in unreconciled] == ["stmt_credit"]
        assert [s["id"] for s in reconciled] == ["stmt_debit"]
        assert building == []
        assert client.get("/api/statements", params={"status": "bogus"}).status_code == 400

    def test_matches(self, client):
        response = client.get("/api/statements/stmt_debit/matches")
        body = response.json()

        assert response.status_code == 200
        assert [m["transaction"]["id"] for m in body["exactMatches"]] == ["exp3"]
        assert body["fuzzyMatches"] == []
        assert body["commentMatches"] == []

    def test_comment_matches_resolve_members(self, client):
        body = client.get("/api/statements/stmt_credit/matches").json()
        assert [m["transaction"]["id"] for m in body["commentMatches"]] == ["inc1"]

    def test_unknown_statement_is_404(self, client):
        assert client.get("/api/statements/nope/matches").status_code == 404

    def test_candidates(self, client):
        response = client.get("/api/statements/stmt_credit/candidates", params={"member": "brown"})
        assert [t["id"] for t in response.json()] == ["inc2"]

    def test_amount_check(self, client):
        body = {"transactions": [{"id": "inc1", "type": "income"}, {"id": "inc2", "type": "income"}]}
        response = client.post("/api/statements/stmt_credit/amount-check", json=body)

        assert response.json() == {
            "statementAmount": 150.0,
            "selectedTotal": 140.0,
            "difference": 10.0,
            "balanced": False,
        }


class TestReconcileEndpoints:

    def test_reconcile_returns_statement_and_check(self, client):
        response = reconcile(client, "stmt_credit", ("income", "inc1"), ("income", "inc2"))
        body = response.json()

        assert response.status_code == 200
        assert body["statement"]["isReconciled"] is True
        assert body["statement"]["reconciledTransactionIds"] == ["inc1", "inc2"]
        assert body["amountCheck"]["difference"] == 10.0

    def test_reconcile_unknown_transaction_is_404(self, client):
        assert reconcile(client, "stmt_debit", ("expenses", "ghost")).status_code == 404

    def test_reconcile_empty_selection_is_400(self, client):
        assert reconcile(client, "stmt_debit").status_code == 400

    def test_unreconcile(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        response = client.post("/api/statements/stmt_debit/unreconcile")

        assert response.status_code == 200
        assert response.json()["statement"]["isReconciled"] is False

    def test_unreconcile_precondition(self, client):
        response = client.post("/api/statements/stmt_debit/unreconcile")
        assert response.status_code == 400
        assert response.json()["detail"] == "Bank statement is not reconciled"

    def test_remove_one_transaction(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp1"), ("expenses", "exp2"))

        response = client.post("/api/transactions/expenses/exp1/unreconcile")

        assert response.status_code == 200
        assert response.json()["statement"]["reconciledTransactionIds"] == ["exp2"]

        response = client.post("/api/transactions/expenses/exp1/unreconcile")
        assert response.status_code == 400
        assert response.json()["detail"] == "Transaction exp1 is not reconciled"

    def test_remove_transaction_its_statement_does_not_list(self, client, store):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))
        link_directly(store, "expenses", "exp1", "stmt_debit")

        response = client.post("/api/transactions/expenses/exp1/unreconcile")

        assert response.status_code == 200
        assert response.json()["statement"]["reconciledTransactionIds"] == ["exp3"]
        assert store._collections["expenses"]["exp1"]["isReconciled"] is False
        assert client.get("/api/reconciliation/consistency").json()["consistent"] is True

    def test_remove_transaction_of_deleted_statement(self, client, store):
        link_directly(store, "expenses", "exp1", "stmt_gone")

        response = client.post("/api/transactions/expenses/exp1/unreconcile")

        assert response.status_code == 200
        assert response.json() == {"statement": None}
        assert store._collections["expenses"]["exp1"]["reconciledBankStatementId"] is None

    def test_in_progress_is_409(self, client, orchestrator):
        orchestrator.coordinator.reconciling = True
        assert reconcile(client, "stmt_debit", ("expenses", "exp3")).status_code == 409

    def test_store_failure_is_502(self, ledger_docs, settings, audit):
        store = NonBatchStore(initial=ledger_docs, fail_after=0)
        orchestrator = ReconciliationOrchestrator(store, settings=settings, audit=audit)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        try:
            response = reconcile(TestClient(app), "stmt_debit", ("expenses", "exp3"))
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 502
        assert response.json()["detail"] == "connection lost"


class TestEditEndpoints:

    def test_statement_edit_needs_confirmation(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        response = client.patch("/api/statements/stmt_debit", json={"changes": {"amount": -160.0}})
        assert response.status_code == 409
        assert response.json()["warning"] == "unreconcile"
        assert client.get("/api/statements", params={"status": "reconciled"}).json()

        response = client.patch(
            "/api/statements/stmt_debit",
            json={"changes": {"amount": -160.0}, "confirm_unreconcile": True},
        )
        assert response.status_code == 200
        assert response.json()["unreconciled"] is True

    def test_plain_edit_needs_no_confirmation(self, client):
        response = client.patch("/api/statements/stmt_debit", json={"changes": {"comment": "gas"}})
        assert response.status_code == 200
        assert response.json() == {"id": "stmt_debit", "unreconciled": False, "statement_id": "stmt_debit"}

    def test_transaction_edit_needs_confirmation(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp1"), ("expenses", "exp2"))

        path = "/api/transactions/expenses/exp1"
        assert client.patch(path, json={"changes": {"isReconciled": False}}).status_code == 409

        response = client.patch(path, json={"changes": {"isReconciled": False}, "confirm_unreconcile": True})
        assert response.status_code == 200
        assert response.json()["statement_id"] == "stmt_debit"

        statement = client.get("/api/statements", params={"status": "reconciled"}).json()[0]
        assert statement["reconciledTransactionIds"] == ["exp2"]

    def test_delete_statement_cascades(self, client, store):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        assert client.delete("/api/statements/stmt_debit").status_code == 200

        assert [s["id"] for s in client.get("/api/statements").json()] == ["stmt_credit"]
        assert client.get("/api/reconciliation/consistency").json()["consistent"] is True

    def test_delete_transaction(self, client):
        assert client.delete("/api/transactions/income/inc1").status_code == 200
        assert client.delete("/api/transactions/income/inc1").status_code == 404

    def test_unknown_kind_is_422(self, client):
        assert client.delete("/api/transactions/pledges/inc1").status_code == 422


class TestReconciliationEndpoints:

    def test_stats(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        body = client.get("/api/reconciliation/stats").json()
        assert body == {
            "total": 2,
            "reconciled": 1,
            "unreconciled": 1,
            "excluded": 0,
            "percentReconciled": 50,
        }
        assert client.get("/api/reconciliation/stats", params={"account_type": "Building"}).json()["total"] == 0

    def test_consistency_and_repair(self, client, store):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        report = client.get("/api/reconciliation/consistency").json()
        assert report == {"consistent": True, "repaired": False, "issues": []}

    def test_recover_and_audit(self, client):
        reconcile(client, "stmt_debit", ("expenses", "exp3"))

        assert client.post("/api/reconciliation/recover").json() == {"recovered": 0}

        audit = client.get("/api/audit").json()
        assert audit["summary"]["total_entries"] == 1
        assert audit["entries"][0]["action"] == "reconciled"
        assert audit["entries"][0]["statement_id"] == "stmt_debit"
