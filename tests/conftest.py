"""
Shared fixtures for the reconciliation tests.
"""

from datetime import datetime

import pytest

from parish_ledger.config import Settings
from parish_ledger.models import BankStatement, LedgerTransaction, TransactionKind
from parish_ledger.store import InMemoryDocumentStore, StoreError
from parish_ledger.utils import AuditLogger

FIXED_NOW = datetime(2024, 3, 5, 12, 0, 0)


def fixed_clock():
    return FIXED_NOW


class NonBatchStore(InMemoryDocumentStore):
    """Store without atomic batches that can fail after N successful updates."""

    def __init__(self, initial=None, fail_after=None):
        super().__init__(initial=initial, clock=fixed_clock)
        self.fail_after = fail_after
        self.updates = 0

    @property
    def supports_batch(self) -> bool:
        return False

    async def update(self, collection, doc_id, fields):
        if self.fail_after is not None and self.updates >= self.fail_after:
            raise StoreError("connection lost")
        self.updates += 1
        await super().update(collection, doc_id, fields)


def statement_doc(amount=-150.00, posting_date="2024-03-01", account_type="Operating", **extra):
    doc = {
        "postingDate": posting_date,
        "description": "CHECK 1042",
        "amount": amount,
        "balance": 1000.00,
        "type": "Debit" if amount < 0 else "Credit",
        "accountType": account_type,
        "isReconciled": False,
        "comment": "",
        "importTimestamp": 1709280000000,
        "importOrder": 0,
    }
    doc.update(extra)
    return doc


def transaction_doc(amount=150.00, date="2024-03-01", account_type="Operating", **extra):
    doc = {
        "date": date,
        "amount": amount,
        "category": "Utilities",
        "subCategory": "",
        "description": "",
        "accountType": account_type,
        "isReconciled": False,
        "reconciledBankStatementId": None,
        "reconciledDate": None,
    }
    doc.update(extra)
    return doc


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        reports_dir=tmp_path / "reports",
    )


@pytest.fixture
def audit():
    return AuditLogger("test")


@pytest.fixture
def ledger_docs():
    """One expense statement, one income statement and their candidates."""
    return {
        "bankStatements": {
            "stmt_debit": statement_doc(-150.00, "2024-03-01"),
            "stmt_credit": statement_doc(
                150.00, "2024-03-02", comment="Smith", importOrder=1
            ),
        },
        "expenses": {
            "exp1": transaction_doc(100.00, "2024-03-01", payeeName="City Power"),
            "exp2": transaction_doc(50.00, "2024-03-02", payeeName="Water Dept"),
            "exp3": transaction_doc(150.00, "2024-03-01", payeeName="Gas Co"),
        },
        "income": {
            "inc1": transaction_doc(90.00, "2024-03-02", category="Offertory", memberId="m1"),
            "inc2": transaction_doc(50.00, "2024-03-02", category="Pledge", memberId="m2"),
        },
        "members": {
            "m1": {"firstName": "Ann", "lastName": "Smith"},
            "m2": {"firstName": "Joe", "lastName": "Brown"},
        },
    }


@pytest.fixture
def store(ledger_docs):
    return InMemoryDocumentStore(initial=ledger_docs, clock=fixed_clock)


async def load_statement(store, statement_id):
    return BankStatement.from_document(await store.get_one("bankStatements", statement_id))


async def load_transaction(store, kind, transaction_id):
    kind = TransactionKind(kind)
    return LedgerTransaction.from_document(await store.get_one(kind.value, transaction_id), kind)
