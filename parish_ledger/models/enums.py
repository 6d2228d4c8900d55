"""Enumerations for the parish ledger reconciliation system."""

from enum import Enum


class AccountType(str, Enum):
    """Bank account a statement or transaction belongs to."""
    OPERATING = "Operating"
    BUILDING = "Building"


class StatementType(str, Enum):
    """Bank statement line direction, stored independently of the amount sign."""
    DEBIT = "Debit"    # Money out
    CREDIT = "Credit"  # Money in


class TransactionKind(str, Enum):
    """
    Ledger collection a transaction lives in.

    The value doubles as the store collection name.
    """
    INCOME = "income"
    EXPENSES = "expenses"

    @classmethod
    def for_statement_amount(cls, amount) -> "TransactionKind":
        """
        Ledger collection a bank statement line can settle against.

        Negative (money out) lines match expenses; zero and positive
        (money in) lines match income.
        """
        return cls.EXPENSES if float(amount or 0) < 0 else cls.INCOME


class MatchTier(str, Enum):
    """Match tiers in display precedence order."""
    EXACT = "exact"      # Same day, same amount
    FUZZY = "fuzzy"      # Within the date window, same amount
    AMOUNT = "amount"    # Same amount, any date
    COMMENT = "comment"  # Statement comment found in transaction text


class DriftKind(str, Enum):
    """Kinds of cross-document inconsistency found on re-read."""
    FLAG_MISMATCH = "flag_mismatch"
    MISSING_TRANSACTION = "missing_transaction"
    MISSING_BACK_REFERENCE = "missing_back_reference"
    DANGLING_TRANSACTION = "dangling_transaction"


class AuditAction(str, Enum):
    """Type of audit action."""
    RECONCILED = "reconciled"
    UNRECONCILED = "unreconciled"
    TRANSACTION_REMOVED = "transaction_removed"
    STATEMENT_EDITED = "statement_edited"
    TRANSACTION_EDITED = "transaction_edited"
    STATEMENT_DELETED = "statement_deleted"
    TRANSACTION_DELETED = "transaction_deleted"
    INTENT_RECOVERED = "intent_recovered"
    DRIFT_DETECTED = "drift_detected"
    DRIFT_REPAIRED = "drift_repaired"
