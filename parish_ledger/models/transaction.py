"""Document models for bank statements, ledger transactions and members."""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional, List, Dict, Any

from ..normalize import normalize_date, to_cents
from .enums import AccountType, StatementType, TransactionKind


def _enum_or_none(enum_cls, value):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _float(value, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


@dataclass
class ReconciledRef:
    """One entry of a statement's reconciliation set."""
    id: str
    type: TransactionKind
    collection: str
    amount: float = 0.0

    @classmethod
    def for_transaction(
        cls,
        transaction: "LedgerTransaction",
        collection: Optional[str] = None,
    ) -> "ReconciledRef":
        kind = transaction.transaction_type
        return cls(
            id=transaction.id,
            type=kind,
            collection=collection or kind.value,
            amount=transaction.amount,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconciledRef":
        collection = data.get("collection") or data.get("type")
        return cls(
            id=data["id"],
            type=TransactionKind(data.get("type") or collection),
            collection=collection,
            amount=_float(data.get("amount")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "collection": self.collection,
            "amount": self.amount,
        }


def statement_reconciliation_fields(
    refs: List[ReconciledRef],
    reconciled_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Store projection of a statement's reconciliation set.

    The flag, the id list and the legacy single-transaction fields are all
    derived from ``refs`` so they cannot disagree with it.
    """
    if not refs:
        return {
            "isReconciled": False,
            "reconciledTransactions": None,
            "reconciledTransactionIds": None,
            "reconciledTransactionId": None,
            "reconciledTransactionType": None,
            "reconciledDate": None,
        }

    return {
        "isReconciled": True,
        "reconciledTransactions": [ref.to_dict() for ref in refs],
        "reconciledTransactionIds": [ref.id for ref in refs],
        "reconciledTransactionId": refs[0].id,
        "reconciledTransactionType": refs[0].type.value,
        "reconciledDate": reconciled_date,
    }


def transaction_reconciliation_fields(
    statement_id: Optional[str],
    reconciled_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Store projection of a transaction's back-reference."""
    if statement_id is None:
        return {
            "reconciledBankStatementId": None,
            "reconciledDate": None,
            "isReconciled": False,
        }
    return {
        "reconciledBankStatementId": statement_id,
        "reconciledDate": reconciled_date,
        "isReconciled": True,
    }


@dataclass
class BankStatement:
    """
    A single bank statement line, created by CSV import.

    Amounts are signed: negative is a debit (money out), positive a credit.
    """
    id: str = ""
    posting_date: Optional[date] = None
    description: str = ""
    details: str = ""
    check_or_slip_number: str = ""
    comment: str = ""

    amount: float = 0.0
    balance: float = 0.0
    type: Optional[StatementType] = None
    account_type: Optional[AccountType] = None

    # Reconciliation state
    reconciled_transactions: List[ReconciledRef] = field(default_factory=list)
    reconciled_date: Optional[Any] = None
    is_excluded: bool = False

    # Older single-transaction documents carry only the legacy fields
    legacy_ref: Optional[ReconciledRef] = None
    # Raw isReconciled as read from the store, kept for drift detection
    stored_is_reconciled: bool = False

    # Import ordering
    import_timestamp: int = 0
    import_order: int = 0

    @property
    def is_reconciled(self) -> bool:
        return bool(self.reconciliation_refs)

    @property
    def reconciliation_refs(self) -> List[ReconciledRef]:
        """Current reconciliation set, falling back to the legacy single link."""
        if self.reconciled_transactions:
            return list(self.reconciled_transactions)
        if self.legacy_ref is not None:
            return [self.legacy_ref]
        return []

    @property
    def reconciled_transaction_id(self) -> Optional[str]:
        refs = self.reconciliation_refs
        return refs[0].id if refs else None

    @property
    def reconciled_transaction_type(self) -> Optional[str]:
        refs = self.reconciliation_refs
        return refs[0].type.value if refs else None

    @property
    def reconciled_transaction_ids(self) -> List[str]:
        return [ref.id for ref in self.reconciliation_refs]

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)

    @property
    def unique_key(self) -> str:
        """Import de-duplication key: accountType_date_amount."""
        day = self.posting_date.isoformat() if self.posting_date else ""
        account = self.account_type.value if self.account_type else ""
        return f"{account}_{day}_{self.amount:.2f}"

    def document_id(self, import_timestamp: int, row_index: int) -> str:
        """Identifier that stays unique for duplicate-looking rows of one import."""
        return f"{self.unique_key}_{import_timestamp}_{row_index}"

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "BankStatement":
        refs = [
            ReconciledRef.from_dict(item)
            for item in (doc.get("reconciledTransactions") or [])
        ]

        legacy_ref = None
        legacy_kind = _enum_or_none(TransactionKind, doc.get("reconciledTransactionType"))
        if not refs and doc.get("reconciledTransactionId") and legacy_kind is not None:
            legacy_ref = ReconciledRef(
                id=doc["reconciledTransactionId"],
                type=legacy_kind,
                collection=legacy_kind.value,
            )

        return cls(
            id=doc.get("id", ""),
            posting_date=normalize_date(doc.get("postingDate")),
            description=doc.get("description") or "",
            details=doc.get("details") or "",
            check_or_slip_number=doc.get("checkOrSlipNumber") or "",
            comment=doc.get("comment") or "",
            amount=_float(doc.get("amount")),
            balance=_float(doc.get("balance")),
            type=_enum_or_none(StatementType, doc.get("type")),
            account_type=_enum_or_none(AccountType, doc.get("accountType")),
            reconciled_transactions=refs,
            reconciled_date=doc.get("reconciledDate"),
            is_excluded=bool(doc.get("isExcluded", False)),
            legacy_ref=legacy_ref,
            stored_is_reconciled=bool(doc.get("isReconciled", False)),
            import_timestamp=int(doc.get("importTimestamp") or 0),
            import_order=int(doc.get("importOrder") or 0),
        )

    def to_document(self) -> Dict[str, Any]:
        """Convert to the store's camelCase document shape."""
        doc = {
            "id": self.id,
            "postingDate": self.posting_date,
            "description": self.description,
            "details": self.details,
            "checkOrSlipNumber": self.check_or_slip_number,
            "comment": self.comment,
            "amount": self.amount,
            "balance": self.balance,
            "type": self.type.value if self.type else None,
            "accountType": self.account_type.value if self.account_type else None,
            "isExcluded": self.is_excluded,
            "importTimestamp": self.import_timestamp,
            "importOrder": self.import_order,
        }
        doc.update(statement_reconciliation_fields(self.reconciliation_refs, self.reconciled_date))
        return doc


@dataclass
class LedgerTransaction:
    """
    An income or expense record.

    Amounts are always stored positive; direction is implied by the
    collection the record lives in.
    """
    id: str = ""
    transaction_type: Optional[TransactionKind] = None

    date: Optional[date] = None
    amount: float = 0.0
    category: str = ""
    sub_category: str = ""
    description: str = ""
    account_type: Optional[AccountType] = None

    # Income
    member_id: Optional[str] = None
    member_name: Optional[str] = None

    # Expenses
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None

    # Reconciliation state
    is_reconciled: bool = False
    reconciled_bank_statement_id: Optional[str] = None
    reconciled_date: Optional[Any] = None

    @property
    def collection(self) -> Optional[str]:
        return self.transaction_type.value if self.transaction_type else None

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)

    def tagged(self, kind: TransactionKind) -> "LedgerTransaction":
        """Copy of this transaction tagged with the collection it came from."""
        return replace(self, transaction_type=kind)

    @classmethod
    def from_document(
        cls,
        doc: Dict[str, Any],
        transaction_type: Optional[TransactionKind] = None,
    ) -> "LedgerTransaction":
        kind = transaction_type or _enum_or_none(TransactionKind, doc.get("transactionType"))
        return cls(
            id=doc.get("id", ""),
            transaction_type=kind,
            date=normalize_date(doc.get("date")),
            amount=_float(doc.get("amount")),
            category=doc.get("category") or "",
            sub_category=doc.get("subCategory") or "",
            description=doc.get("description") or "",
            account_type=_enum_or_none(AccountType, doc.get("accountType")),
            member_id=doc.get("memberId"),
            member_name=doc.get("memberName"),
            payee_id=doc.get("payeeId"),
            payee_name=doc.get("payeeName"),
            is_reconciled=bool(doc.get("isReconciled", False)),
            reconciled_bank_statement_id=doc.get("reconciledBankStatementId"),
            reconciled_date=doc.get("reconciledDate"),
        )

    def to_document(self) -> Dict[str, Any]:
        """Convert to the store's camelCase document shape."""
        doc = {
            "id": self.id,
            "transactionType": self.collection,
            "date": self.date,
            "amount": self.amount,
            "category": self.category,
            "subCategory": self.sub_category,
            "description": self.description,
            "accountType": self.account_type.value if self.account_type else None,
            "isReconciled": self.is_reconciled,
            "reconciledBankStatementId": self.reconciled_bank_statement_id,
            "reconciledDate": self.reconciled_date,
        }
        if self.transaction_type == TransactionKind.INCOME:
            doc["memberId"] = self.member_id
            doc["memberName"] = self.member_name
        elif self.transaction_type == TransactionKind.EXPENSES:
            doc["payeeId"] = self.payee_id
            doc["payeeName"] = self.payee_name
        return doc


@dataclass
class Member:
    """Parish member, used only to resolve names on income records."""
    id: str = ""
    first_name: str = ""
    last_name: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Member":
        return cls(
            id=doc.get("id", ""),
            first_name=doc.get("firstName") or "",
            last_name=doc.get("lastName") or "",
        )
