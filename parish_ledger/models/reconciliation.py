"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import AuditAction, DriftKind, MatchTier
from .transaction import LedgerTransaction


@dataclass
class TransactionMatch:
    """
    A candidate transaction for one bank statement.
    Produced by the match finder, never written to the store.
    """
    transaction: LedgerTransaction
    tier: MatchTier

    # Match details
    days_apart: Optional[int] = None
    amount_difference_cents: int = 0

    # Comment tier only
    matched_field: Optional[str] = None
    comment_score: float = 0.0  # 0-1, informational

    @property
    def id(self) -> str:
        return self.transaction.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tier": self.tier.value,
            "daysApart": self.days_apart,
            "amountDifferenceCents": self.amount_difference_cents,
            "matchedField": self.matched_field,
            "commentScore": self.comment_score,
            "transaction": self.transaction.to_document(),
        }


@dataclass
class MatchResult:
    """All four match tiers for a statement, pairwise disjoint by transaction id."""
    exact_matches: List[TransactionMatch] = field(default_factory=list)
    fuzzy_matches: List[TransactionMatch] = field(default_factory=list)
    amount_matches: List[TransactionMatch] = field(default_factory=list)
    comment_matches: List[TransactionMatch] = field(default_factory=list)

    @property
    def all_matches(self) -> List[TransactionMatch]:
        """Every match in display precedence order."""
        return self.exact_matches + self.fuzzy_matches + self.amount_matches + self.comment_matches

    @property
    def is_empty(self) -> bool:
        return not self.all_matches

    def ids(self, tier: MatchTier) -> List[str]:
        tiers = {
            MatchTier.EXACT: self.exact_matches,
            MatchTier.FUZZY: self.fuzzy_matches,
            MatchTier.AMOUNT: self.amount_matches,
            MatchTier.COMMENT: self.comment_matches,
        }
        return [m.id for m in tiers[tier]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exactMatches": [m.to_dict() for m in self.exact_matches],
            "fuzzyMatches": [m.to_dict() for m in self.fuzzy_matches],
            "amountMatches": [m.to_dict() for m in self.amount_matches],
            "commentMatches": [m.to_dict() for m in self.comment_matches],
        }


@dataclass
class AmountCheck:
    """Advisory comparison between a statement and the transactions picked for it."""
    statement_amount: float = 0.0
    selected_total: float = 0.0
    difference: float = 0.0
    balanced: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statementAmount": self.statement_amount,
            "selectedTotal": self.selected_total,
            "difference": self.difference,
            "balanced": self.balanced,
        }


@dataclass
class ReconciliationStats:
    """Summary counts over a set of bank statements."""
    total: int = 0
    reconciled: int = 0
    unreconciled: int = 0
    excluded: int = 0
    percent_reconciled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "reconciled": self.reconciled,
            "unreconciled": self.unreconciled,
            "excluded": self.excluded,
            "percentReconciled": self.percent_reconciled,
        }


@dataclass
class EditOutcome:
    """Result of an edit that may have broken a reconciliation link."""
    document_id: str
    changes: Dict[str, Any] = field(default_factory=dict)
    unreconciled: bool = False
    statement_id: Optional[str] = None


@dataclass
class DriftIssue:
    """A cross-document inconsistency between statements and transactions."""
    kind: DriftKind
    statement_id: Optional[str] = None
    transaction_id: Optional[str] = None
    collection: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "statementId": self.statement_id,
            "transactionId": self.transaction_id,
            "collection": self.collection,
            "message": self.message,
        }


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.RECONCILED

    # Context
    statement_id: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "statement_id": self.statement_id,
            "transaction_ids": self.transaction_ids,
            "message": self.message,
            "details": self.details,
            "success": self.success,
            "error_message": self.error_message,
        }
