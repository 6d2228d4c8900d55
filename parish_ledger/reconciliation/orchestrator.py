"""
Reconciliation Orchestrator - data flow between the store and the engine.

1. Load statements, income, expenses and members from the store
2. Find matches for the selected statement
3. Apply the linked write through the coordinator
4. Reload both sides so statistics and lists reflect the store
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import (
    AccountType,
    AmountCheck,
    AuditAction,
    AuditEntry,
    BankStatement,
    DriftIssue,
    EditOutcome,
    LedgerTransaction,
    MatchResult,
    Member,
    ReconciliationStats,
    TransactionKind,
)
from ..store import DocumentNotFoundError, DocumentStore
from ..utils.audit_logger import AuditLogger
from .consistency import ConsistencyChecker
from .coordinator import ReconciliationCoordinator
from .exceptions import TransactionNotReconciledError, UnreconcileConfirmationRequired
from .matcher import MatchFinder
from .stats import reconciliation_stats

logger = structlog.get_logger()


@dataclass
class LedgerSnapshot:
    """Everything the matcher needs, loaded in one pass."""
    statements: List[BankStatement] = field(default_factory=list)
    income: List[LedgerTransaction] = field(default_factory=list)
    expenses: List[LedgerTransaction] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    statements_collection: str = "bankStatements"

    @property
    def transactions(self) -> List[LedgerTransaction]:
        return self.income + self.expenses

    def statement(self, statement_id: str) -> BankStatement:
        for statement in self.statements:
            if statement.id == statement_id:
                return statement
        raise DocumentNotFoundError(self.statements_collection, statement_id)


class ReconciliationOrchestrator:
    """
    Main entry point for reconciliation work against a document store.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = audit or AuditLogger("session")
        self.matcher = MatchFinder(
            tolerance=self.settings.amount_tolerance,
            fuzzy_window_days=self.settings.fuzzy_window_days,
        )
        self.coordinator = ReconciliationCoordinator(store, audit=self.audit, settings=self.settings)
        self.checker = ConsistencyChecker(self.settings)

    def collection_for(self, kind: TransactionKind) -> str:
        return self.settings.collection_for(kind)

    # Loading

    async def load_statements(self) -> List[BankStatement]:
        """
        Statements ordered newest import first, then by CSV row order.
        """
        docs = await self.store.get_many(self.settings.statements_collection, order_by="postingDate")
        statements = [BankStatement.from_document(doc) for doc in docs]
        statements.sort(key=lambda s: (-s.import_timestamp, s.import_order))
        return statements

    async def load_transactions(self, kind: TransactionKind) -> List[LedgerTransaction]:
        docs = await self.store.get_many(self.collection_for(kind), order_by="date")
        return [LedgerTransaction.from_document(doc, kind) for doc in docs]

    async def load_members(self) -> List[Member]:
        docs = await self.store.get_many(self.settings.members_collection)
        return [Member.from_document(doc) for doc in docs]

    async def load(self) -> LedgerSnapshot:
        snapshot = LedgerSnapshot(
            statements=await self.load_statements(),
            income=await self.load_transactions(TransactionKind.INCOME),
            expenses=await self.load_transactions(TransactionKind.EXPENSES),
            members=await self.load_members(),
            statements_collection=self.settings.statements_collection,
        )
        logger.debug(
            "Ledger loaded",
            statements=len(snapshot.statements),
            income=len(snapshot.income),
            expenses=len(snapshot.expenses),
        )
        return snapshot

    async def get_statement(self, statement_id: str) -> BankStatement:
        doc = await self.store.get_one(self.settings.statements_collection, statement_id)
        if doc is None:
            raise DocumentNotFoundError(self.settings.statements_collection, statement_id)
        return BankStatement.from_document(doc)

    async def get_transaction(self, kind: TransactionKind, transaction_id: str) -> LedgerTransaction:
        kind = TransactionKind(kind)
        collection = self.collection_for(kind)
        doc = await self.store.get_one(collection, transaction_id)
        if doc is None:
            raise DocumentNotFoundError(collection, transaction_id)
        return LedgerTransaction.from_document(doc, kind)

    async def get_transactions(self, refs: Sequence[Dict[str, Any]]) -> List[LedgerTransaction]:
        """Fetch transactions from ``[{"id": ..., "type": "income"|"expenses"}]``."""
        return [
            await self.get_transaction(TransactionKind(ref["type"]), ref["id"])
            for ref in refs
        ]

    # Reads

    async def matches_for(self, statement_id: str) -> MatchResult:
        snapshot = await self.load()
        return self.matcher.find_matches(
            snapshot.statement(statement_id),
            snapshot.income,
            snapshot.expenses,
            snapshot.members,
        )

    async def candidates_for(
        self,
        statement_id: str,
        member: Optional[str] = None,
        category: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> List[LedgerTransaction]:
        snapshot = await self.load()
        return self.matcher.manual_candidates(
            snapshot.statement(statement_id),
            snapshot.income,
            snapshot.expenses,
            member=member,
            category=category,
            amount=amount,
            members=snapshot.members,
        )

    async def amount_check(self, statement_id: str, refs: Sequence[Dict[str, Any]]) -> AmountCheck:
        statement = await self.get_statement(statement_id)
        return self.matcher.amount_check(statement, await self.get_transactions(refs))

    async def stats(self, account_type: Optional[AccountType] = None) -> ReconciliationStats:
        statements = await self.load_statements()
        if account_type is not None:
            statements = [s for s in statements if s.account_type == account_type]
        return reconciliation_stats(statements)

    # Writes

    async def reconcile(
        self,
        statement_id: str,
        refs: Sequence[Dict[str, Any]],
    ) -> Tuple[BankStatement, AmountCheck]:
        """
        Reconcile a statement with the referenced transactions.

        Returns:
            The statement as re-read from the store, and the amount check
            of the selection (advisory, never blocks the write)
        """
        statement = await self.get_statement(statement_id)
        transactions = await self.get_transactions(refs)
        check = self.matcher.amount_check(statement, transactions)
        await self.coordinator.reconcile(statement, transactions)
        return await self.get_statement(statement_id), check

    async def unreconcile(self, statement_id: str) -> BankStatement:
        statement = await self.get_statement(statement_id)
        await self.coordinator.unreconcile(statement)
        return await self.get_statement(statement_id)

    async def remove_transaction(self, kind: TransactionKind, transaction_id: str) -> Optional[BankStatement]:
        """
        Unreconcile one transaction, keeping the rest of its statement's set.

        Returns:
            The statement as re-read from the store, or None when the
            transaction pointed at a statement that no longer exists
        """
        transaction = await self.get_transaction(kind, transaction_id)
        statement_id = transaction.reconciled_bank_statement_id
        if not transaction.is_reconciled and not statement_id:
            raise TransactionNotReconciledError(transaction_id)
        await self.coordinator.remove_transaction(transaction)
        if not statement_id:
            return None
        doc = await self.store.get_one(self.settings.statements_collection, statement_id)
        return BankStatement.from_document(doc) if doc else None

    async def edit_statement(
        self,
        statement_id: str,
        changes: Dict[str, Any],
        confirm_unreconcile: bool = True,
    ) -> EditOutcome:
        statement = await self.get_statement(statement_id)
        if not confirm_unreconcile and self.coordinator.statement_edit_breaks_link(statement, changes):
            raise UnreconcileConfirmationRequired(statement.id, statement.id)
        return await self.coordinator.edit_statement(statement, changes)

    async def edit_transaction(
        self,
        kind: TransactionKind,
        transaction_id: str,
        changes: Dict[str, Any],
        confirm_unreconcile: bool = True,
    ) -> EditOutcome:
        transaction = await self.get_transaction(kind, transaction_id)
        if not confirm_unreconcile and self.coordinator.transaction_edit_breaks_link(transaction, changes):
            raise UnreconcileConfirmationRequired(transaction.id, transaction.reconciled_bank_statement_id)
        return await self.coordinator.edit_transaction(transaction, changes)

    async def delete_statement(self, statement_id: str) -> None:
        statement = await self.get_statement(statement_id)
        await self.coordinator.delete_statement(statement)

    async def delete_transaction(self, kind: TransactionKind, transaction_id: str) -> None:
        transaction = await self.get_transaction(kind, transaction_id)
        await self.coordinator.delete_transaction(transaction)

    async def recover_pending(self) -> int:
        return await self.coordinator.recover_pending()

    async def check_consistency(self, repair: bool = False) -> List[DriftIssue]:
        """
        Re-read both sides and report drift; optionally write the repair.

        Returns:
            Issues found before any repair
        """
        snapshot = await self.load()
        issues = self.checker.find_drift(snapshot.statements, snapshot.transactions)
        if not issues:
            return issues

        self.audit.log(AuditEntry(
            action=AuditAction.DRIFT_DETECTED,
            message=f"{len(issues)} inconsistency(ies) found",
            details={"issues": [issue.to_dict() for issue in issues]},
        ))

        if repair:
            ops = self.checker.plan_repair(snapshot.statements, snapshot.transactions, issues)
            await self.coordinator.apply_writes("repair_drift", ops)
            self.audit.log(AuditEntry(
                action=AuditAction.DRIFT_REPAIRED,
                message=f"Applied {len(ops)} repair write(s)",
                details={"writes": len(ops)},
            ))
            logger.info("Reconciliation drift repaired", issues=len(issues), writes=len(ops))
        return issues
