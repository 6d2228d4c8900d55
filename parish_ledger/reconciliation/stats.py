"""Reconciliation statistics and statement selection helpers."""

from typing import Iterable, List, Optional

from ..models import AccountType, BankStatement, ReconciliationStats


def reconciliation_stats(statements: Iterable[BankStatement]) -> ReconciliationStats:
    """
    Count reconciled statements.

    ``unreconciled`` is simply ``total - reconciled``, so excluded statements
    are counted there too; ``excluded`` is reported alongside, not
    subtracted.
    """
    statements = list(statements)
    total = len(statements)
    reconciled = sum(1 for s in statements if s.is_reconciled)
    excluded = sum(1 for s in statements if s.is_excluded)

    percent = 0
    if total > 0:
        # Half-up rounding of the percentage
        percent = (200 * reconciled + total) // (2 * total)

    return ReconciliationStats(
        total=total,
        reconciled=reconciled,
        unreconciled=total - reconciled,
        excluded=excluded,
        percent_reconciled=percent,
    )


def _for_account(statements: Iterable[BankStatement], account_type: Optional[AccountType]):
    if account_type is None:
        return list(statements)
    return [s for s in statements if s.account_type == account_type]


def unreconciled_statements(
    statements: Iterable[BankStatement],
    account_type: Optional[AccountType] = None,
) -> List[BankStatement]:
    """Statements still waiting for reconciliation; excluded ones are left out."""
    return [
        s for s in _for_account(statements, account_type)
        if not s.is_reconciled and not s.is_excluded
    ]


def reconciled_statements(
    statements: Iterable[BankStatement],
    account_type: Optional[AccountType] = None,
) -> List[BankStatement]:
    return [s for s in _for_account(statements, account_type) if s.is_reconciled]


def next_unreconciled(
    statements: Iterable[BankStatement],
    current_id: str,
    account_type: Optional[AccountType] = None,
) -> Optional[BankStatement]:
    """Statement to select after ``current_id`` has been reconciled."""
    pending = unreconciled_statements(statements, account_type)
    for index, statement in enumerate(pending):
        if statement.id == current_id:
            return pending[index + 1] if index + 1 < len(pending) else None
    return None
