"""
Tests for the Reconciliation Orchestrator.
"""

import pytest

from parish_ledger.config import Settings
from parish_ledger.models import TransactionKind
from parish_ledger.reconciliation import ReconciliationOrchestrator, TransactionNotReconciledError
from parish_ledger.store import InMemoryDocumentStore

from conftest import fixed_clock


@pytest.fixture
def renamed_settings(tmp_path):
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        income_collection="donations",
        expenses_collection="payments",
    )


@pytest.fixture
def renamed_store(ledger_docs):
    docs = dict(ledger_docs)
    docs["donations"] = docs.pop("income")
    docs["payments"] = docs.pop("expenses")
    return InMemoryDocumentStore(initial=docs, clock=fixed_clock)


@pytest.fixture
def orchestrator(store, settings, audit):
    return ReconciliationOrchestrator(store, settings=settings, audit=audit)


class TestCustomCollectionNames:

    @pytest.mark.asyncio
    async def test_reconcile_round_trip(self, renamed_store, renamed_settings, audit):
        orchestrator = ReconciliationOrchestrator(renamed_store, settings=renamed_settings, audit=audit)

        matches = await orchestrator.matches_for("stmt_debit")
        assert [m.transaction.id for m in matches.exact_matches] == ["exp3"]

        statement, _ = await orchestrator.reconcile("stmt_debit", [{"id": "exp3", "type": "expenses"}])
        assert statement.reconciled_transaction_ids == ["exp3"]
        assert statement.reconciliation_refs[0].collection == "payments"
        assert statement.reconciled_transaction_type == "expenses"
        assert (await renamed_store.get_one("payments", "exp3"))["reconciledBankStatementId"] == "stmt_debit"
        assert await renamed_store.get_one("expenses", "exp3") is None
        assert await orchestrator.check_consistency() == []

        statement = await orchestrator.unreconcile("stmt_debit")
        assert not statement.is_reconciled
        assert (await renamed_store.get_one("payments", "exp3"))["isReconciled"] is False

    @pytest.mark.asyncio
    async def test_remove_and_delete(self, renamed_store, renamed_settings, audit):
        orchestrator = ReconciliationOrchestrator(renamed_store, settings=renamed_settings, audit=audit)
        await orchestrator.reconcile("stmt_credit", [
            {"id": "inc1", "type": "income"},
            {"id": "inc2", "type": "income"},
        ])

        statement = await orchestrator.remove_transaction(TransactionKind.INCOME, "inc1")
        assert statement.reconciled_transaction_ids == ["inc2"]
        assert (await renamed_store.get_one("donations", "inc1"))["isReconciled"] is False

        await orchestrator.delete_statement("stmt_credit")
        assert (await renamed_store.get_one("donations", "inc2"))["isReconciled"] is False
        assert await orchestrator.check_consistency() == []


class TestRemoveTransaction:

    @pytest.mark.asyncio
    async def test_unreconciled_transaction_is_rejected(self, orchestrator):
        with pytest.raises(TransactionNotReconciledError):
            await orchestrator.remove_transaction(TransactionKind.EXPENSES, "exp1")

    @pytest.mark.asyncio
    async def test_statement_deleted_without_cascade(self, store, audit, tmp_path):
        settings = Settings(_env_file=None, data_dir=tmp_path, cascade_unreconcile_on_delete=False)
        orchestrator = ReconciliationOrchestrator(store, settings=settings, audit=audit)
        await orchestrator.reconcile("stmt_debit", [{"id": "exp3", "type": "expenses"}])
        await orchestrator.delete_statement("stmt_debit")

        assert await orchestrator.remove_transaction(TransactionKind.EXPENSES, "exp3") is None

        exp3 = await orchestrator.get_transaction(TransactionKind.EXPENSES, "exp3")
        assert not exp3.is_reconciled
        assert exp3.reconciled_bank_statement_id is None
