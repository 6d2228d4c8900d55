"""
Match Finder - candidate transactions for one bank statement.

Tiers, in display precedence:
1. Exact: same posting day and amount
2. Fuzzy: within the date window and same amount
3. Amount: same amount, any date
4. Comment: the statement's comment appears in the transaction's text

Every tier only considers unreconciled transactions of the expected type
(expenses for money out, income for money in) on the same account. Tiers
are disjoint; ties inside a tier are left for the user to resolve.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import structlog
from rapidfuzz import fuzz

from ..config import get_settings
from ..models import (
    AmountCheck,
    BankStatement,
    LedgerTransaction,
    MatchResult,
    MatchTier,
    Member,
    TransactionKind,
    TransactionMatch,
)
from ..normalize import amounts_match, days_apart, same_day, to_cents, within_days

logger = structlog.get_logger()

StatementLike = Union[BankStatement, Dict[str, Any]]
TransactionLike = Union[LedgerTransaction, Dict[str, Any]]
MemberLike = Union[Member, Dict[str, Any]]


def expected_transaction_type(statement_amount) -> TransactionKind:
    """The sign-to-type rule: negative lines match expenses, others income."""
    return TransactionKind.for_statement_amount(statement_amount)


def as_statement(statement: StatementLike) -> BankStatement:
    if isinstance(statement, BankStatement):
        return statement
    return BankStatement.from_document(statement)


def as_transactions(
    transactions: Optional[Iterable[TransactionLike]],
    kind: TransactionKind,
) -> List[LedgerTransaction]:
    """Convert and tag transactions with the collection they came from."""
    result = []
    for txn in transactions or []:
        if isinstance(txn, LedgerTransaction):
            result.append(txn.tagged(kind))
        else:
            result.append(LedgerTransaction.from_document(txn, kind))
    return result


def as_members(members: Optional[Iterable[MemberLike]]) -> Dict[str, Member]:
    index = {}
    for member in members or []:
        if not isinstance(member, Member):
            member = Member.from_document(member)
        index[member.id] = member
    return index


class MatchFinder:
    """
    Tiered matcher for bank statement reconciliation.

    Read-only and synchronous over in-memory data; the caller loads the
    statement and transactions.
    """

    def __init__(
        self,
        tolerance: Optional[float] = None,
        fuzzy_window_days: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.tolerance = self.settings.amount_tolerance if tolerance is None else tolerance
        self.fuzzy_window_days = (
            self.settings.fuzzy_window_days if fuzzy_window_days is None else fuzzy_window_days
        )

    def find_matches(
        self,
        statement: StatementLike,
        income_transactions: Optional[Iterable[TransactionLike]],
        expense_transactions: Optional[Iterable[TransactionLike]],
        members: Optional[Iterable[MemberLike]] = None,
    ) -> MatchResult:
        """
        Compute all four match tiers for a statement.

        Args:
            statement: Bank statement to match
            income_transactions: Income records
            expense_transactions: Expense records
            members: Members used to resolve names on income records

        Returns:
            MatchResult with exact, fuzzy, amount and comment matches
        """
        statement = as_statement(statement)
        pool = (
            as_transactions(income_transactions, TransactionKind.INCOME)
            + as_transactions(expense_transactions, TransactionKind.EXPENSES)
        )
        eligible = self._eligible(statement, pool)

        exact = [
            self._build_match(statement, txn, MatchTier.EXACT)
            for txn in eligible
            if same_day(txn.date, statement.posting_date) and self._amount_fits(statement, txn)
        ]
        seen: Set[str] = {m.id for m in exact}

        fuzzy = [
            self._build_match(statement, txn, MatchTier.FUZZY)
            for txn in eligible
            if txn.id not in seen
            and within_days(txn.date, statement.posting_date, self.fuzzy_window_days)
            and self._amount_fits(statement, txn)
        ]
        seen.update(m.id for m in fuzzy)

        amount = [
            self._build_match(statement, txn, MatchTier.AMOUNT)
            for txn in eligible
            if txn.id not in seen and self._amount_fits(statement, txn)
        ]
        seen.update(m.id for m in amount)

        comment = self._comment_matches(statement, eligible, as_members(members), seen)

        result = MatchResult(
            exact_matches=exact,
            fuzzy_matches=fuzzy,
            amount_matches=amount,
            comment_matches=comment,
        )

        logger.debug(
            "Match search complete",
            statement_id=statement.id,
            candidates=len(eligible),
            exact=len(exact),
            fuzzy=len(fuzzy),
            amount=len(amount),
            comment=len(comment),
        )
        return result

    def manual_candidates(
        self,
        statement: StatementLike,
        income_transactions: Optional[Iterable[TransactionLike]],
        expense_transactions: Optional[Iterable[TransactionLike]],
        member: Optional[str] = None,
        category: Optional[str] = None,
        amount: Optional[float] = None,
        members: Optional[Iterable[MemberLike]] = None,
    ) -> List[LedgerTransaction]:
        """
        Transactions a user may pick by hand for a statement.

        Same eligibility as matching (unreconciled, expected type, same
        account) with optional member-name, category and amount filters.
        """
        statement = as_statement(statement)
        pool = (
            as_transactions(income_transactions, TransactionKind.INCOME)
            + as_transactions(expense_transactions, TransactionKind.EXPENSES)
        )
        member_index = as_members(members)

        candidates = []
        for txn in self._eligible(statement, pool):
            if member:
                name = self._member_name(txn, member_index)
                if not name or member.lower() not in name.lower():
                    continue
            if category:
                if not txn.category or category.lower() not in txn.category.lower():
                    continue
            if amount is not None and not amounts_match(txn.amount, amount, self.tolerance):
                continue
            candidates.append(txn)
        return candidates

    def amount_check(
        self,
        statement: StatementLike,
        transactions: Sequence[TransactionLike],
    ) -> AmountCheck:
        """
        Compare |statement.amount| with the total of the selected transactions.

        Advisory only: an unbalanced selection may still be reconciled.
        """
        statement = as_statement(statement)
        selected_cents = sum(
            to_cents(t.amount if isinstance(t, LedgerTransaction) else t.get("amount"))
            for t in transactions
        )
        difference_cents = statement.amount_cents - selected_cents
        return AmountCheck(
            statement_amount=statement.amount_cents / 100.0,
            selected_total=selected_cents / 100.0,
            difference=difference_cents / 100.0,
            balanced=abs(difference_cents) <= int(round(self.tolerance * 100)),
        )

    def _eligible(
        self,
        statement: BankStatement,
        pool: List[LedgerTransaction],
    ) -> List[LedgerTransaction]:
        expected = expected_transaction_type(statement.amount)
        return [
            txn for txn in pool
            if not txn.is_reconciled
            and txn.transaction_type == expected
            and txn.account_type == statement.account_type
        ]

    def _amount_fits(self, statement: BankStatement, txn: LedgerTransaction) -> bool:
        return amounts_match(abs(statement.amount), txn.amount, self.tolerance)

    def _build_match(
        self,
        statement: BankStatement,
        txn: LedgerTransaction,
        tier: MatchTier,
    ) -> TransactionMatch:
        return TransactionMatch(
            transaction=txn,
            tier=tier,
            days_apart=days_apart(txn.date, statement.posting_date),
            amount_difference_cents=statement.amount_cents - txn.amount_cents,
        )

    def _comment_matches(
        self,
        statement: BankStatement,
        eligible: List[LedgerTransaction],
        members: Dict[str, Member],
        seen: Set[str],
    ) -> List[TransactionMatch]:
        comment = (statement.comment or "").strip()
        if not comment:
            return []

        matches = []
        for txn in eligible:
            if txn.id in seen:
                continue
            hit = self._comment_hit(comment, self._searchable_texts(txn, members))
            if hit is None:
                continue
            match = self._build_match(statement, txn, MatchTier.COMMENT)
            match.matched_field, match.comment_score = hit
            matches.append(match)
        return matches

    def _comment_hit(self, comment: str, texts: List[str]) -> Optional[Tuple[str, float]]:
        """Best field containing the comment, with its similarity score."""
        needle = comment.lower()
        best = None
        for text in texts:
            if needle not in text.lower():
                continue
            score = fuzz.ratio(needle, text.lower()) / 100.0
            if best is None or score > best[1]:
                best = (text, score)
        return best

    def _searchable_texts(
        self,
        txn: LedgerTransaction,
        members: Dict[str, Member],
    ) -> List[str]:
        texts = []

        if txn.member_name:
            texts.append(txn.member_name)
        elif txn.member_id and txn.member_id in members:
            member = members[txn.member_id]
            texts.extend([member.full_name, member.first_name, member.last_name])

        texts.extend([txn.payee_name, txn.category, txn.sub_category, txn.description])
        return [t for t in texts if t and t.strip()]

    def _member_name(
        self,
        txn: LedgerTransaction,
        members: Dict[str, Member],
    ) -> Optional[str]:
        if txn.member_name:
            return txn.member_name
        if txn.member_id and txn.member_id in members:
            return members[txn.member_id].full_name
        return txn.payee_name


def find_matches(
    statement: StatementLike,
    income_transactions: Optional[Iterable[TransactionLike]],
    expense_transactions: Optional[Iterable[TransactionLike]],
    members: Optional[Iterable[MemberLike]] = None,
) -> MatchResult:
    """Match a statement using the configured tolerance and date window."""
    return MatchFinder().find_matches(statement, income_transactions, expense_transactions, members)
