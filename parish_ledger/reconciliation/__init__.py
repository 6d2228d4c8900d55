"""Reconciliation engine components."""

from .exceptions import (
    ReconciliationError,
    StatementNotReconciledError,
    TransactionNotReconciledError,
    InvalidTransactionError,
    ReconciliationInProgressError,
    UnreconcileConfirmationRequired,
)
from .matcher import MatchFinder, find_matches, expected_transaction_type
from .coordinator import ReconciliationCoordinator
from .stats import (
    reconciliation_stats,
    unreconciled_statements,
    reconciled_statements,
    next_unreconciled,
)
from .consistency import ConsistencyChecker
from .orchestrator import ReconciliationOrchestrator, LedgerSnapshot

__all__ = [
    "ReconciliationError",
    "StatementNotReconciledError",
    "TransactionNotReconciledError",
    "InvalidTransactionError",
    "ReconciliationInProgressError",
    "UnreconcileConfirmationRequired",
    "MatchFinder",
    "find_matches",
    "expected_transaction_type",
    "ReconciliationCoordinator",
    "reconciliation_stats",
    "unreconciled_statements",
    "reconciled_statements",
    "next_unreconciled",
    "ConsistencyChecker",
    "ReconciliationOrchestrator",
    "LedgerSnapshot",
]
