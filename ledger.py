"""Balance effects of transactions and the read-only aggregates built on them.

An account's stored balance equals its seed balance plus the delta of every
paid transaction attached to it. Credit-card balances hold the amount owed,
so expenses raise them. Everything here is pure; callers persist results.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Mapping, Optional, Sequence

from models import Account, AccountType, Category, Transaction, TransactionType
from periods import current_month, month_period, trailing_months, trailing_window
from schemas import Balances, BudgetProgress, CategoryExpense, MonthlyHistoryEntry

logger = logging.getLogger(__name__)

UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "#9ca3af"
BUDGET_WARNING_PERCENT = 80.0


def balance_delta(txn: Transaction, account_type: AccountType) -> int:
    if not txn.is_paid:
        return 0
    if txn.type == TransactionType.income:
        return txn.value_cents
    if txn.type == TransactionType.expense:
        if account_type == AccountType.credit_card:
            return txn.value_cents
        return -txn.value_cents
    # Transfers are not wired into balances yet.
    logger.warning(
        f"transfer_ignored: transaction_id={txn.id} account_id={txn.account_id} "
        f"destination_account_id={txn.destination_account_id}"
    )
    return 0


def apply(account: Account, txn: Transaction) -> Account:
    delta = balance_delta(txn, account.type)
    return account.model_copy(update={"balance_cents": account.balance_cents + delta})


def reverse(account: Account, txn: Transaction) -> Account:
    delta = balance_delta(txn, account.type)
    return account.model_copy(update={"balance_cents": account.balance_cents - delta})


def plan_balance_changes(
    old: Optional[Transaction],
    old_account: Optional[Account],
    new: Optional[Transaction],
    new_account: Optional[Account],
) -> dict[str, int]:
    """Net balance change per account id for replacing ``old`` with ``new``.

    ``old`` is reversed against the account it was attached to and ``new`` is
    applied against its own account; either side may be ``None`` (create or
    delete). Accounts whose net change is zero are omitted.
    """
    changes: dict[str, int] = defaultdict(int)
    if old is not None and old_account is not None:
        changes[old_account.id] -= balance_delta(old, old_account.type)
    if new is not None and new_account is not None:
        changes[new_account.id] += balance_delta(new, new_account.type)
    return {account_id: delta for account_id, delta in changes.items() if delta}


def calculate_balances(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
    today: date,
) -> Balances:
    real = 0
    card_bill = 0
    for account in accounts:
        if account.type == AccountType.credit_card:
            card_bill += account.balance_cents
        else:
            real += account.balance_cents

    # Month totals count every transaction regardless of its paid flag.
    month = current_month(today)
    income = 0
    expense = 0
    for txn in transactions:
        if not month.contains(txn.date):
            continue
        if txn.type == TransactionType.income:
            income += txn.value_cents
        elif txn.type == TransactionType.expense:
            expense += txn.value_cents

    return Balances(
        real_balance_cents=real,
        credit_card_bill_cents=card_bill,
        projected_balance_cents=real - card_bill,
        monthly_income_cents=income,
        monthly_expense_cents=expense,
    )


def monthly_history(
    transactions: Iterable[Transaction], months: int, today: date
) -> list[MonthlyHistoryEntry]:
    starts = trailing_months(today, months)
    window = trailing_window(today, months)
    income_totals: dict[tuple[int, int], int] = defaultdict(int)
    expense_totals: dict[tuple[int, int], int] = defaultdict(int)
    for txn in transactions:
        if not txn.is_paid or not window.contains(txn.date):
            continue
        key = (txn.date.year, txn.date.month)
        if txn.type == TransactionType.income:
            income_totals[key] += txn.value_cents
        elif txn.type == TransactionType.expense:
            expense_totals[key] += txn.value_cents

    out: list[MonthlyHistoryEntry] = []
    for start in starts:
        key = (start.year, start.month)
        income = income_totals.get(key, 0)
        expense = expense_totals.get(key, 0)
        out.append(
            MonthlyHistoryEntry(
                year=start.year,
                month=start.month,
                label=f"{start.year:04d}-{start.month:02d}",
                income_cents=income,
                expense_cents=expense,
                net_cents=income - expense,
            )
        )
    return out


def _paid_expense_totals(
    transactions: Iterable[Transaction], start: date, end: date
) -> dict[Optional[str], int]:
    totals: dict[Optional[str], int] = defaultdict(int)
    for txn in transactions:
        if txn.type != TransactionType.expense or not txn.is_paid:
            continue
        if start <= txn.date <= end:
            totals[txn.category_id] += txn.value_cents
    return totals


def expenses_by_category(
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
    months: int,
    today: date,
) -> list[CategoryExpense]:
    window = trailing_window(today, months)
    totals = _paid_expense_totals(transactions, window.start, window.end)
    lookup: Mapping[str, Category] = {c.id: c for c in categories}

    out: list[CategoryExpense] = []
    for category_id, value in totals.items():
        if value == 0:
            continue
        category = lookup.get(category_id) if category_id else None
        out.append(
            CategoryExpense(
                category_id=category_id,
                name=category.name if category else UNCATEGORIZED_NAME,
                color=category.color if category else UNCATEGORIZED_COLOR,
                value_cents=value,
            )
        )
    out.sort(key=lambda item: (-item.value_cents, item.name))
    return out


def budget_progress(
    categories: Sequence[Category],
    transactions: Iterable[Transaction],
    year: int,
    month: int,
) -> list[BudgetProgress]:
    period = month_period(year, month)
    totals = _paid_expense_totals(transactions, period.start, period.end)

    out: list[BudgetProgress] = []
    for category in categories:
        limit = category.budget_limit_cents or 0
        used = totals.get(category.id, 0)
        percent = (used / limit * 100) if limit > 0 else 0.0
        is_over = limit > 0 and used > limit
        if limit <= 0:
            status = "none"
        elif is_over:
            status = "over"
        elif percent > BUDGET_WARNING_PERCENT:
            status = "warning"
        else:
            status = "ok"
        out.append(
            BudgetProgress(
                category_id=category.id,
                name=category.name,
                color=category.color,
                limit_cents=category.budget_limit_cents,
                used_cents=used,
                percent=round(percent, 2),
                is_over=is_over,
                status=status,
            )
        )
    return out
