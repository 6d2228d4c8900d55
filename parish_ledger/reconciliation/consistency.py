"""
Consistency checks between bank statements and ledger transactions.

Reconciliation links live on both sides. A write that fails part-way, or an
edit made by an older client, can leave the two sides disagreeing. The
checker re-reads both collections, reports every disagreement and can plan
the writes that repair it.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import (
    BankStatement,
    DriftIssue,
    DriftKind,
    LedgerTransaction,
    ReconciledRef,
    statement_reconciliation_fields,
    transaction_reconciliation_fields,
)
from ..store import WriteOp

logger = structlog.get_logger()


class ConsistencyChecker:
    """Finds and repairs drift between the two sides of a reconciliation."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _collection(self, kind) -> str:
        return self.settings.collection_for(kind)

    def find_drift(
        self,
        statements: Iterable[BankStatement],
        transactions: Iterable[LedgerTransaction],
    ) -> List[DriftIssue]:
        """
        Compare statements against transactions.

        Args:
            statements: All bank statements
            transactions: All income and expense records, tagged with type

        Returns:
            One DriftIssue per disagreement found
        """
        statements = list(statements)
        by_key: Dict[Tuple[str, str], LedgerTransaction] = {
            (self._collection(t.transaction_type), t.id): t for t in transactions
        }
        statements_by_id = {s.id: s for s in statements}
        issues: List[DriftIssue] = []

        for statement in statements:
            refs = statement.reconciliation_refs
            if statement.stored_is_reconciled != bool(refs):
                issues.append(DriftIssue(
                    kind=DriftKind.FLAG_MISMATCH,
                    statement_id=statement.id,
                    message=(
                        f"isReconciled={statement.stored_is_reconciled} "
                        f"with {len(refs)} linked transaction(s)"
                    ),
                ))

            for ref in refs:
                collection = self._collection(ref.type)
                txn = by_key.get((collection, ref.id))
                if txn is None:
                    issues.append(DriftIssue(
                        kind=DriftKind.MISSING_TRANSACTION,
                        statement_id=statement.id,
                        transaction_id=ref.id,
                        collection=collection,
                        message="Linked transaction does not exist",
                    ))
                elif not txn.is_reconciled or txn.reconciled_bank_statement_id != statement.id:
                    issues.append(DriftIssue(
                        kind=DriftKind.MISSING_BACK_REFERENCE,
                        statement_id=statement.id,
                        transaction_id=ref.id,
                        collection=collection,
                        message=(
                            "Transaction points at "
                            f"{txn.reconciled_bank_statement_id or 'nothing'}"
                        ),
                    ))

        for txn in by_key.values():
            if not txn.is_reconciled and not txn.reconciled_bank_statement_id:
                continue
            statement = statements_by_id.get(txn.reconciled_bank_statement_id)
            if statement is None or txn.id not in statement.reconciled_transaction_ids:
                issues.append(DriftIssue(
                    kind=DriftKind.DANGLING_TRANSACTION,
                    statement_id=txn.reconciled_bank_statement_id,
                    transaction_id=txn.id,
                    collection=self._collection(txn.transaction_type),
                    message="Transaction is not listed by its statement",
                ))

        if issues:
            logger.warning("Reconciliation drift detected", issues=len(issues))
        return issues

    def plan_repair(
        self,
        statements: Iterable[BankStatement],
        transactions: Iterable[LedgerTransaction],
        issues: List[DriftIssue],
    ) -> List[WriteOp]:
        """
        Writes that bring both sides back in line.

        - Dangling transactions are cleared.
        - Transactions missing their back-reference are re-linked when free,
          otherwise dropped from the statement.
        - Missing transactions are dropped from the statement.
        - Statement flags are rewritten from the remaining set.
        """
        statements_by_id = {s.id: s for s in statements}
        by_key = {(self._collection(t.transaction_type), t.id): t for t in transactions}

        remaining: Dict[str, List[ReconciledRef]] = {}
        touched_statements = set()
        relinked = set()
        ops: List[WriteOp] = []

        def refs_for(statement_id: str) -> List[ReconciledRef]:
            if statement_id not in remaining:
                remaining[statement_id] = statements_by_id[statement_id].reconciliation_refs
            return remaining[statement_id]

        def drop(statement_id: str, transaction_id: str) -> None:
            remaining[statement_id] = [r for r in refs_for(statement_id) if r.id != transaction_id]
            touched_statements.add(statement_id)

        for issue in issues:
            if issue.kind == DriftKind.FLAG_MISMATCH:
                refs_for(issue.statement_id)
                touched_statements.add(issue.statement_id)

            elif issue.kind == DriftKind.MISSING_TRANSACTION:
                drop(issue.statement_id, issue.transaction_id)

            elif issue.kind == DriftKind.MISSING_BACK_REFERENCE:
                txn = by_key[(issue.collection, issue.transaction_id)]
                if txn.reconciled_bank_statement_id in (None, issue.statement_id):
                    statement = statements_by_id[issue.statement_id]
                    relinked.add((issue.collection, issue.transaction_id))
                    ops.append(WriteOp(
                        "update",
                        issue.collection,
                        issue.transaction_id,
                        transaction_reconciliation_fields(statement.id, statement.reconciled_date),
                    ))
                else:
                    drop(issue.statement_id, issue.transaction_id)

            elif issue.kind == DriftKind.DANGLING_TRANSACTION:
                if (issue.collection, issue.transaction_id) in relinked:
                    continue
                ops.append(WriteOp(
                    "update",
                    issue.collection,
                    issue.transaction_id,
                    transaction_reconciliation_fields(None),
                ))

        for statement_id in sorted(touched_statements):
            statement = statements_by_id[statement_id]
            refs = remaining[statement_id]
            ops.append(WriteOp(
                "update",
                self.settings.statements_collection,
                statement_id,
                statement_reconciliation_fields(refs, statement.reconciled_date if refs else None),
            ))

        return ops
