"""Errors raised by the reconciliation core."""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for reconciliation failures detected before any write."""


class StatementNotReconciledError(ReconciliationError):
    """Unreconcile was requested for a statement that is not reconciled."""

    def __init__(self, statement_id: str):
        self.statement_id = statement_id
        super().__init__("Bank statement is not reconciled")


class TransactionNotReconciledError(ReconciliationError):
    """Removal was requested for a transaction that is not reconciled."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} is not reconciled")


class InvalidTransactionError(ReconciliationError):
    """A transaction handed to reconcile cannot be linked."""


class ReconciliationInProgressError(ReconciliationError):
    """Another reconcile/unreconcile is still running on this coordinator."""

    def __init__(self):
        super().__init__("A reconciliation is already in progress")


class UnreconcileConfirmationRequired(ReconciliationError):
    """An edit would break an existing reconciliation and was not confirmed."""

    def __init__(self, document_id: str, statement_id: Optional[str] = None):
        self.document_id = document_id
        self.statement_id = statement_id
        super().__init__(
            "This change will unreconcile the record. Resubmit with confirmation to proceed."
        )
