"""
Reconciliation Coordinator - linked writes between statements and transactions.

A bank statement and the transaction(s) it settles carry mirrored fields:
the statement lists the transactions, each transaction points back at the
statement. Every operation here builds the complete set of writes for both
sides first, then applies them:

- Stores with atomic batches commit the set in one batch.
- Other stores get a write intent recorded before the writes and removed
  after them. An intent left behind by a failure is replayed by
  ``recover_pending``, minus any write a later operation has superseded.

Store errors are never retried or wrapped; they reach the caller as-is.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from uuid import uuid4

import structlog

from ..config import Settings, get_settings
from ..models import (
    AuditAction,
    AuditEntry,
    BankStatement,
    EditOutcome,
    LedgerTransaction,
    ReconciledRef,
    TransactionKind,
    statement_reconciliation_fields,
    transaction_reconciliation_fields,
)
from ..normalize import normalize_date, to_cents
from ..store import DocumentStore, StoreError, WriteOp
from ..utils.audit_logger import AuditLogger
from .exceptions import (
    InvalidTransactionError,
    ReconciliationError,
    ReconciliationInProgressError,
    StatementNotReconciledError,
)

logger = structlog.get_logger()

# Fields whose change invalidates an existing reconciliation
STATEMENT_FINANCIAL_FIELDS = ("postingDate", "amount", "type", "accountType")
TRANSACTION_FINANCIAL_FIELDS = ("date", "amount", "accountType")

# Only reconcile/unreconcile may write these
STATEMENT_LINK_FIELDS = (
    "isReconciled",
    "reconciledTransactions",
    "reconciledTransactionIds",
    "reconciledTransactionId",
    "reconciledTransactionType",
    "reconciledDate",
)
TRANSACTION_LINK_FIELDS = ("isReconciled", "reconciledBankStatementId", "reconciledDate")


def _field_changed(field_name: str, old: Any, new: Any) -> bool:
    if field_name in ("postingDate", "date"):
        return normalize_date(old) != normalize_date(new)
    if field_name == "amount":
        return to_cents(old) != to_cents(new) or (float(old or 0) < 0) != (float(new or 0) < 0)
    return old != new


def _without(changes: Dict[str, Any], keys: Sequence[str]) -> Dict[str, Any]:
    return {k: v for k, v in changes.items() if k not in keys}


class ReconciliationCoordinator:
    """
    Executes reconcile/unreconcile transitions across both document types.

    One coordinator serves one user session: a second operation started
    while one is running raises ReconciliationInProgressError.
    """

    def __init__(
        self,
        store: DocumentStore,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = audit or AuditLogger("session")
        self.clock = clock or datetime.utcnow
        self.reconciling = False
        self.error: Optional[str] = None

    @property
    def statements_collection(self) -> str:
        return self.settings.statements_collection

    def collection_for(self, kind: TransactionKind) -> str:
        return self.settings.collection_for(kind)

    @asynccontextmanager
    async def _operation(self, verb: str):
        if self.reconciling:
            raise ReconciliationInProgressError()
        self.reconciling = True
        self.error = None
        try:
            yield
        except Exception as e:
            self.error = f"Failed to {verb}: {e}"
            logger.error("Reconciliation operation failed", operation=verb, error=str(e))
            raise
        finally:
            self.reconciling = False

    def statement_edit_breaks_link(self, statement: BankStatement, changes: Dict[str, Any]) -> bool:
        """True when applying ``changes`` would unreconcile the statement."""
        if not statement.is_reconciled:
            return False
        current = statement.to_document()
        return any(
            k in changes and _field_changed(k, current.get(k), changes[k])
            for k in STATEMENT_FINANCIAL_FIELDS
        )

    def transaction_edit_breaks_link(self, transaction: LedgerTransaction, changes: Dict[str, Any]) -> bool:
        """True when applying ``changes`` would unreconcile the transaction."""
        if not transaction.is_reconciled:
            return False
        if changes.get("isReconciled") is False:
            return True
        current = transaction.to_document()
        return any(
            k in changes and _field_changed(k, current.get(k), changes[k])
            for k in TRANSACTION_FINANCIAL_FIELDS
        )

    # Public operations

    async def reconcile(
        self,
        statement: BankStatement,
        transactions: Union[LedgerTransaction, Sequence[LedgerTransaction]],
    ) -> bool:
        """
        Link a statement to one or more transactions.

        Args:
            statement: Bank statement to reconcile
            transactions: A transaction or list of transactions, each tagged
                with its transaction_type

        Returns:
            True once every write has been applied
        """
        if isinstance(transactions, LedgerTransaction):
            transactions = [transactions]

        async with self._operation("reconcile"):
            selected = self._validate_selection(statement, transactions)
            now = self.clock()
            refs = [
                ReconciledRef.for_transaction(t, self.collection_for(t.transaction_type))
                for t in selected
            ]
            new_ids = {ref.id for ref in refs}

            ops: List[WriteOp] = []

            # Re-reconciling replaces the previous set
            dropped = [ref for ref in statement.reconciliation_refs if ref.id not in new_ids]
            ops.extend(await self._clear_transactions_ops(dropped))

            ops.append(WriteOp(
                "update",
                self.statements_collection,
                statement.id,
                statement_reconciliation_fields(refs, now),
            ))
            for ref in refs:
                ops.append(WriteOp(
                    "update",
                    ref.collection,
                    ref.id,
                    transaction_reconciliation_fields(statement.id, now),
                ))

            await self._write("reconcile", statement.id, ops)

            check_total = sum(t.amount_cents for t in selected)
            self._record(
                AuditAction.RECONCILED,
                statement.id,
                [ref.id for ref in refs],
                f"Reconciled with {len(refs)} transaction(s)",
                details={
                    "statement_amount_cents": statement.amount_cents,
                    "selected_total_cents": check_total,
                    "difference_cents": statement.amount_cents - check_total,
                },
            )
            return True

    async def unreconcile(self, statement: BankStatement) -> bool:
        """Break every link of a reconciled statement."""
        async with self._operation("unreconcile"):
            if not statement.is_reconciled:
                raise StatementNotReconciledError(statement.id)

            ops = await self._unreconcile_ops(statement)
            await self._write("unreconcile", statement.id, ops)

            self._record(
                AuditAction.UNRECONCILED,
                statement.id,
                statement.reconciled_transaction_ids,
                "Statement unreconciled",
            )
            return True

    async def remove_transaction(
        self,
        transaction: LedgerTransaction,
        statement: Optional[BankStatement] = None,
    ) -> bool:
        """
        Drop one transaction from a statement's reconciliation set.

        The statement stays reconciled while other transactions remain and
        is fully unreconciled once the set is empty. The transaction's own
        link is cleared even when the statement no longer lists it or no
        longer exists.

        Args:
            transaction: Transaction to unreconcile, tagged with its type
            statement: Its statement; loaded from the store when omitted
        """
        if transaction.transaction_type is None:
            raise InvalidTransactionError(f"Transaction {transaction.id} has no transaction type")

        async with self._operation("unreconcile transaction"):
            statement_id = statement.id if statement is not None else transaction.reconciled_bank_statement_id
            if transaction.reconciled_bank_statement_id not in (None, statement_id):
                raise InvalidTransactionError(
                    f"Transaction {transaction.id} is reconciled with "
                    f"statement {transaction.reconciled_bank_statement_id}"
                )
            if statement is None and statement_id:
                statement = await self._load_statement(statement_id)
                if statement is None:
                    logger.warning(
                        "Reconciled transaction points at a missing statement",
                        transaction_id=transaction.id,
                        statement_id=statement_id,
                    )

            ops: List[WriteOp] = []
            if statement is not None:
                ops.extend(self._statement_removal_op(statement, transaction.id))
            ops.append(WriteOp(
                "update",
                self.collection_for(transaction.transaction_type),
                transaction.id,
                transaction_reconciliation_fields(None),
            ))
            await self._write("remove_transaction", statement_id, ops)

            self._record(
                AuditAction.TRANSACTION_REMOVED,
                statement_id,
                [transaction.id],
                "Transaction removed from reconciliation",
            )
            return True

    async def edit_statement(self, statement: BankStatement, changes: Dict[str, Any]) -> EditOutcome:
        """
        Apply an edit to a statement.

        Changing a financial field of a reconciled statement unreconciles it
        first; the edit then lands with every reconciliation field cleared.
        """
        changes = _without(changes, STATEMENT_LINK_FIELDS + ("id",))

        async with self._operation("update bank statement"):
            breaks_link = self.statement_edit_breaks_link(statement, changes)

            ops: List[WriteOp] = []
            if breaks_link:
                ops.extend(await self._clear_transactions_ops(statement.reconciliation_refs))
                update = {**changes, **statement_reconciliation_fields([])}
            else:
                update = dict(changes)
            ops.append(WriteOp("update", self.statements_collection, statement.id, update))

            await self._write("edit_statement", statement.id, ops)

            self._record(
                AuditAction.STATEMENT_EDITED,
                statement.id,
                statement.reconciled_transaction_ids if breaks_link else [],
                "Statement edited" + (" and unreconciled" if breaks_link else ""),
                details={"fields": sorted(changes)},
            )
            return EditOutcome(
                document_id=statement.id,
                changes=update,
                unreconciled=breaks_link,
                statement_id=statement.id,
            )

    async def edit_transaction(self, transaction: LedgerTransaction, changes: Dict[str, Any]) -> EditOutcome:
        """
        Apply an edit to an income or expense record.

        Unchecking "reconciled" or changing a financial field of a reconciled
        transaction removes it from its statement before the edit is applied.
        """
        if transaction.transaction_type is None:
            raise InvalidTransactionError(f"Transaction {transaction.id} has no transaction type")

        edit = _without(changes, TRANSACTION_LINK_FIELDS + ("id", "transactionType"))

        async with self._operation("update transaction"):
            breaks_link = self.transaction_edit_breaks_link(transaction, changes)

            ops: List[WriteOp] = []
            statement_id = transaction.reconciled_bank_statement_id
            if breaks_link:
                if statement_id:
                    statement = await self._load_statement(statement_id)
                    if statement is not None:
                        ops.extend(self._statement_removal_op(statement, transaction.id))
                    else:
                        logger.warning(
                            "Reconciled transaction points at a missing statement",
                            transaction_id=transaction.id,
                            statement_id=statement_id,
                        )
                edit.update(transaction_reconciliation_fields(None))
            ops.append(WriteOp("update", self.collection_for(transaction.transaction_type), transaction.id, edit))

            await self._write("edit_transaction", statement_id, ops)

            self._record(
                AuditAction.TRANSACTION_EDITED,
                statement_id if breaks_link else None,
                [transaction.id],
                "Transaction edited" + (" and unreconciled" if breaks_link else ""),
                details={"fields": sorted(changes)},
            )
            return EditOutcome(
                document_id=transaction.id,
                changes=edit,
                unreconciled=breaks_link,
                statement_id=statement_id if breaks_link else None,
            )

    async def delete_statement(self, statement: BankStatement) -> None:
        """Delete a statement, unreconciling its transactions first when configured."""
        async with self._operation("delete bank statement"):
            ops: List[WriteOp] = []
            cascade = statement.is_reconciled and self.settings.cascade_unreconcile_on_delete
            if cascade:
                ops.extend(await self._clear_transactions_ops(statement.reconciliation_refs))
            ops.append(WriteOp("delete", self.statements_collection, statement.id))

            await self._write("delete_statement", statement.id, ops)

            self._record(
                AuditAction.STATEMENT_DELETED,
                statement.id,
                statement.reconciled_transaction_ids if cascade else [],
                "Statement deleted" + (" with cascade unreconcile" if cascade else ""),
            )

    async def delete_transaction(self, transaction: LedgerTransaction) -> None:
        """Delete a transaction, removing it from its statement's set first."""
        if transaction.transaction_type is None:
            raise InvalidTransactionError(f"Transaction {transaction.id} has no transaction type")

        async with self._operation("delete transaction"):
            ops: List[WriteOp] = []
            statement_id = transaction.reconciled_bank_statement_id
            if transaction.is_reconciled and statement_id:
                statement = await self._load_statement(statement_id)
                if statement is not None:
                    ops.extend(self._statement_removal_op(statement, transaction.id))
            ops.append(WriteOp("delete", self.collection_for(transaction.transaction_type), transaction.id))

            await self._write("delete_transaction", statement_id, ops)

            self._record(
                AuditAction.TRANSACTION_DELETED,
                statement_id,
                [transaction.id],
                "Transaction deleted",
            )

    async def recover_pending(self) -> int:
        """
        Replay write intents left behind by interrupted operations.

        Writes set absolute values, so replaying an intent that was partly
        applied converges on the intended state.

        Returns:
            Number of intents replayed
        """
        async with self._operation("recover pending writes"):
            intents = await self.store.get_many(
                self.settings.intents_collection, order_by="createdAt", descending=False
            )
            for intent in intents:
                ops = [WriteOp.from_dict(item) for item in intent.get("writes", [])]
                for op in ops:
                    if op.kind == "update" and not await self._exists(op.collection, op.doc_id):
                        logger.warning(
                            "Skipping replay on missing document",
                            intent_id=intent["id"],
                            collection=op.collection,
                            doc_id=op.doc_id,
                        )
                        continue
                    await self.store.apply(op)
                await self.store.delete_one(self.settings.intents_collection, intent["id"])

                self._record(
                    AuditAction.INTENT_RECOVERED,
                    intent.get("statementId"),
                    [op.doc_id for op in ops if op.collection != self.statements_collection],
                    f"Replayed pending {intent.get('action', 'write')}",
                    details={"intent_id": intent["id"], "writes": len(ops)},
                )

            if intents:
                logger.info("Recovered pending writes", intents=len(intents))
            return len(intents)

    async def apply_writes(self, action: str, ops: List[WriteOp], statement_id: Optional[str] = None) -> None:
        """Apply externally planned writes with the same atomicity rules."""
        async with self._operation(action.replace("_", " ")):
            await self._write(action, statement_id, ops)

    # Write planning

    def _validate_selection(
        self,
        statement: BankStatement,
        transactions: Sequence[LedgerTransaction],
    ) -> List[LedgerTransaction]:
        if not transactions:
            raise ReconciliationError("At least one transaction is required")

        selected: List[LedgerTransaction] = []
        seen = set()
        for txn in transactions:
            if txn.transaction_type is None:
                raise InvalidTransactionError(f"Transaction {txn.id} has no transaction type")
            if txn.is_reconciled and txn.reconciled_bank_statement_id not in (None, statement.id):
                raise InvalidTransactionError(
                    f"Transaction {txn.id} is already reconciled with "
                    f"statement {txn.reconciled_bank_statement_id}"
                )
            if txn.id in seen:
                continue
            seen.add(txn.id)
            selected.append(txn)
        return selected

    async def _unreconcile_ops(self, statement: BankStatement) -> List[WriteOp]:
        ops = await self._clear_transactions_ops(statement.reconciliation_refs)
        ops.append(WriteOp(
            "update",
            self.statements_collection,
            statement.id,
            statement_reconciliation_fields([]),
        ))
        return ops

    def _statement_removal_op(self, statement: BankStatement, transaction_id: str) -> List[WriteOp]:
        refs = statement.reconciliation_refs
        remaining = [r for r in refs if r.id != transaction_id]
        if len(remaining) == len(refs):
            return []
        fields = statement_reconciliation_fields(
            remaining, statement.reconciled_date if remaining else None
        )
        return [WriteOp("update", self.statements_collection, statement.id, fields)]

    async def _clear_transactions_ops(self, refs: List[ReconciledRef]) -> List[WriteOp]:
        ops = []
        for ref in refs:
            collection = self.collection_for(ref.type)
            if await self._exists(collection, ref.id):
                ops.append(WriteOp("update", collection, ref.id, transaction_reconciliation_fields(None)))
            else:
                logger.warning(
                    "Reconciled transaction no longer exists",
                    collection=collection,
                    transaction_id=ref.id,
                )
        return ops

    async def _exists(self, collection: str, doc_id: str) -> bool:
        return await self.store.get_one(collection, doc_id) is not None

    async def _load_statement(self, statement_id: str) -> Optional[BankStatement]:
        doc = await self.store.get_one(self.statements_collection, statement_id)
        return BankStatement.from_document(doc) if doc else None

    # Write execution

    async def _write(self, action: str, statement_id: Optional[str], ops: List[WriteOp]) -> None:
        if not ops:
            return

        if self.store.supports_batch:
            batch = self.store.batch()
            for op in ops:
                if op.kind == "set":
                    batch.set(op.collection, op.doc_id, op.data)
                elif op.kind == "update":
                    batch.update(op.collection, op.doc_id, op.data)
                elif op.kind == "delete":
                    batch.delete(op.collection, op.doc_id)
                else:
                    raise StoreError(f"Unknown write kind: {op.kind}")
            await batch.commit()
            return

        await self._supersede_intents(ops)

        intent_id = str(uuid4())
        await self.store.set_one(self.settings.intents_collection, intent_id, {
            "action": action,
            "statementId": statement_id,
            "writes": [op.to_dict() for op in ops],
            "createdAt": self.clock(),
        })
        try:
            for op in ops:
                await self.store.apply(op)
        except Exception:
            logger.exception(
                "Write interrupted; intent kept for recovery",
                action=action,
                statement_id=statement_id,
                intent_id=intent_id,
            )
            raise
        await self.store.delete_one(self.settings.intents_collection, intent_id)

    async def _supersede_intents(self, ops: List[WriteOp]) -> None:
        """
        Drop pending writes to documents that ``ops`` is about to write.

        A later operation reflects what the user wants now, so recovery must
        not replay older writes over it. Intents left with no writes are
        deleted.
        """
        touched = {(op.collection, op.doc_id) for op in ops}
        intents = await self.store.get_many(self.settings.intents_collection)
        for intent in intents:
            writes = intent.get("writes", [])
            kept = [w for w in writes if (w["collection"], w["docId"]) not in touched]
            if len(kept) == len(writes):
                continue

            logger.warning(
                "Pending writes superseded by a newer operation",
                intent_id=intent["id"],
                action=intent.get("action"),
                superseded=len(writes) - len(kept),
            )
            if kept:
                await self.store.set_one(self.settings.intents_collection, intent["id"], {"writes": kept})
            else:
                await self.store.delete_one(self.settings.intents_collection, intent["id"])

    def _record(
        self,
        action: AuditAction,
        statement_id: Optional[str],
        transaction_ids: List[str],
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.audit.log(AuditEntry(
            action=action,
            statement_id=statement_id,
            transaction_ids=list(transaction_ids),
            message=message,
            details=details or {},
        ))
