"""Data models for the parish ledger reconciliation system."""

from .enums import (
    AccountType,
    StatementType,
    TransactionKind,
    MatchTier,
    DriftKind,
    AuditAction,
)
from .transaction import (
    BankStatement,
    LedgerTransaction,
    Member,
    ReconciledRef,
    statement_reconciliation_fields,
    transaction_reconciliation_fields,
)
from .reconciliation import (
    TransactionMatch,
    MatchResult,
    AmountCheck,
    ReconciliationStats,
    EditOutcome,
    DriftIssue,
    AuditEntry,
)

__all__ = [
    # Enums
    "AccountType",
    "StatementType",
    "TransactionKind",
    "MatchTier",
    "DriftKind",
    "AuditAction",
    # Documents
    "BankStatement",
    "LedgerTransaction",
    "Member",
    "ReconciledRef",
    "statement_reconciliation_fields",
    "transaction_reconciliation_fields",
    # Reconciliation
    "TransactionMatch",
    "MatchResult",
    "AmountCheck",
    "ReconciliationStats",
    "EditOutcome",
    "DriftIssue",
    "AuditEntry",
]
