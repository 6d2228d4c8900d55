"""
Tests for reconciliation statistics and statement selection.
"""

from parish_ledger.models import AccountType, BankStatement, ReconciledRef, TransactionKind
from parish_ledger.reconciliation import (
    next_unreconciled,
    reconciled_statements,
    reconciliation_stats,
    unreconciled_statements,
)


def make_statement(statement_id, reconciled=False, excluded=False, account=AccountType.OPERATING):
    refs = []
    if reconciled:
        refs = [ReconciledRef(id=f"t_{statement_id}", type=TransactionKind.INCOME, collection="income")]
    return BankStatement(
        id=statement_id,
        amount=10.0,
        account_type=account,
        reconciled_transactions=refs,
        is_excluded=excluded,
    )


class TestReconciliationStats:

    def test_empty_list(self):
        stats = reconciliation_stats([])
        assert stats.total == 0
        assert stats.percent_reconciled == 0

    def test_counts_and_rounding(self):
        statements = [
            make_statement("a", reconciled=True),
            make_statement("b", reconciled=True),
            make_statement("c"),
        ]
        stats = reconciliation_stats(statements)

        assert stats.total == 3
        assert stats.reconciled == 2
        assert stats.unreconciled == 1
        assert stats.percent_reconciled == 67

    def test_half_rounds_up(self):
        statements = [make_statement(str(i), reconciled=i < 1) for i in range(8)]
        # 1/8 = 12.5%
        assert reconciliation_stats(statements).percent_reconciled == 13

    def test_excluded_reported_separately(self):
        statements = [
            make_statement("a", reconciled=True),
            make_statement("b", excluded=True),
        ]
        stats = reconciliation_stats(statements)

        assert stats.unreconciled == 1
        assert stats.excluded == 1
        assert stats.to_dict()["percentReconciled"] == 50

    def test_legacy_link_counts_as_reconciled(self):
        statement = BankStatement(
            id="old",
            legacy_ref=ReconciledRef(id="t1", type=TransactionKind.EXPENSES, collection="expenses"),
        )
        assert reconciliation_stats([statement]).reconciled == 1


class TestStatementSelection:

    def test_unreconciled_skips_excluded_and_other_accounts(self):
        statements = [
            make_statement("a"),
            make_statement("b", excluded=True),
            make_statement("c", account=AccountType.BUILDING),
            make_statement("d", reconciled=True),
        ]

        assert [s.id for s in unreconciled_statements(statements, AccountType.OPERATING)] == ["a"]
        assert [s.id for s in unreconciled_statements(statements)] == ["a", "c"]
        assert [s.id for s in reconciled_statements(statements)] == ["d"]

    def test_next_unreconciled(self):
        statements = [make_statement("a"), make_statement("b", reconciled=True), make_statement("c")]

        assert next_unreconciled(statements, "a").id == "c"
        assert next_unreconciled(statements, "c") is None
        assert next_unreconciled(statements, "missing") is None
