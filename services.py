from __future__ import annotations

import functools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

import alerts
import ledger
from config import get_settings
from context import OwnerContext, require_owner
from errors import NotFound, OwnershipMismatch, PersistenceFailure, ValidationError
from gateway import Operation, PersistenceGateway
from models import (
    Account,
    AccountType,
    Category,
    Collection,
    Goal,
    GoalDeposit,
    NotificationPreferences,
    OwnedRecord,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from periods import current_month
from recurrence import ExpansionResult, calculate_next_date, local_now, local_today
from schemas import (
    AccountIn,
    AccountUpdateIn,
    AppNotification,
    Balances,
    BudgetProgress,
    CategoryExpense,
    CategoryIn,
    GoalDepositIn,
    GoalIn,
    MonthlyHistoryEntry,
    NotificationPreferencesIn,
    RecurringTransactionIn,
    TransactionIn,
)
from suggestions import suggest_category

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
R = TypeVar("R", bound=OwnedRecord)


DEFAULT_ACCOUNTS: tuple[dict[str, Any], ...] = (
    {"name": "Nubank (Conta)", "type": AccountType.checking, "balance_cents": 250_000, "icon": "landmark"},
    {"name": "Carteira Física", "type": AccountType.cash, "balance_cents": 15_000, "icon": "wallet"},
    {
        "name": "Nubank (Cartão)",
        "type": AccountType.credit_card,
        "balance_cents": 120_000,
        "icon": "credit-card",
        "closing_day": 25,
        "due_day": 5,
        "limit_cents": 500_000,
    },
    {"name": "Reserva Emergência", "type": AccountType.investment, "balance_cents": 1_000_000, "icon": "trending-up"},
)

DEFAULT_CATEGORIES: tuple[dict[str, Any], ...] = (
    {"name": "Moradia", "color": "#ef4444", "icon": "home"},
    {"name": "Alimentação", "color": "#f59e0b", "icon": "shopping-cart", "budget_limit_cents": 120_000},
    {"name": "Transporte", "color": "#3b82f6", "icon": "car"},
    {"name": "Lazer", "color": "#8b5cf6", "icon": "party-popper"},
    {"name": "Saúde", "color": "#10b981", "icon": "heart-pulse"},
    {"name": "Educação", "color": "#6366f1", "icon": "graduation-cap"},
    {"name": "Salário", "color": "#10b981", "icon": "banknote"},
)


_CLEARABLE_ACCOUNT_FIELDS = frozenset({"closing_day", "due_day", "limit_cents"})


def new_id() -> str:
    return uuid.uuid4().hex


def parse_payload(model: type[M], data: Union[M, dict[str, Any]]) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


def degrade_gracefully(default_factory: Callable[[], Any]):
    """Read-path policy: storage failures yield an empty result, not an error."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except PersistenceFailure:
                logger.warning(
                    f"read_degraded: operation={fn.__qualname__} "
                    f"owner_id={self.owner.owner_id}"
                )
                return default_factory()

        return wrapper

    return decorator


def format_brl(cents: int) -> str:
    formatted = f"{abs(cents) / 100:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    sign = "-" if cents < 0 else ""
    return f"{sign}R$ {formatted}"


class OwnerScopedService:
    def __init__(self, gateway: PersistenceGateway, owner: OwnerContext) -> None:
        self.gateway = gateway
        self.owner = require_owner(owner)

    @property
    def owner_id(self) -> str:
        return self.owner.owner_id

    def _load(self, collection: Collection, model: type[R], record_id: str) -> R:
        record = self.gateway.get_by_id(collection.value, record_id)
        if record is None:
            raise NotFound(collection.value, record_id)
        if record.get("owner_id") != self.owner_id:
            logger.warning(
                f"ownership_mismatch: collection={collection.value} id={record_id} "
                f"owner_id={self.owner_id}"
            )
            raise OwnershipMismatch(collection.value, record_id)
        try:
            return model.model_validate(record)
        except PydanticValidationError as exc:
            raise ValidationError(f"Stored {collection.value} record is malformed") from exc

    def _load_all(self, collection: Collection, model: type[R]) -> list[R]:
        out: list[R] = []
        for record in self.gateway.query_by_owner(collection.value, self.owner_id):
            if record.get("owner_id") != self.owner_id:
                continue
            try:
                out.append(model.model_validate(record))
            except PydanticValidationError:
                logger.warning(
                    f"record_unreadable: collection={collection.value} "
                    f"id={record.get('id')} owner_id={self.owner_id}"
                )
        return out


class AccountService(OwnerScopedService):
    @degrade_gracefully(list)
    def list_all(self) -> list[Account]:
        return self._load_all(Collection.accounts, Account)

    def get(self, account_id: str) -> Account:
        return self._load(Collection.accounts, Account, account_id)

    def create(self, data: Union[AccountIn, dict[str, Any]]) -> Account:
        data = parse_payload(AccountIn, data)
        account = Account(id=new_id(), owner_id=self.owner_id, **data.model_dump())
        self.gateway.put(Collection.accounts.value, account.id, account.to_record())
        return account

    def update(
        self, account_id: str, data: Union[AccountUpdateIn, dict[str, Any]]
    ) -> Account:
        """Change only the fields sent; the only way to pay down a card."""
        data = parse_payload(AccountUpdateIn, data)
        current = self.get(account_id)
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in _CLEARABLE_ACCOUNT_FIELDS
        }
        merged = {**current.model_dump(include=set(AccountIn.model_fields)), **changes}
        account = current.model_copy(update=parse_payload(AccountIn, merged).model_dump())
        self.gateway.put(Collection.accounts.value, account.id, account.to_record())
        return account

    def delete(self, account_id: str) -> None:
        self.get(account_id)
        self.gateway.delete(Collection.accounts.value, account_id)


class CategoryService(OwnerScopedService):
    @degrade_gracefully(list)
    def list_all(self) -> list[Category]:
        return self._load_all(Collection.categories, Category)

    def get(self, category_id: str) -> Category:
        return self._load(Collection.categories, Category, category_id)

    def create(self, data: Union[CategoryIn, dict[str, Any]]) -> Category:
        data = parse_payload(CategoryIn, data)
        category = Category(id=new_id(), owner_id=self.owner_id, **data.model_dump())
        self.gateway.put(Collection.categories.value, category.id, category.to_record())
        return category

    def update(self, category_id: str, data: Union[CategoryIn, dict[str, Any]]) -> Category:
        data = parse_payload(CategoryIn, data)
        category = self.get(category_id).model_copy(update=data.model_dump())
        self.gateway.put(Collection.categories.value, category.id, category.to_record())
        return category

    def update_budget(self, category_id: str, limit_cents: Optional[int]) -> Category:
        if limit_cents is not None and limit_cents < 0:
            raise ValidationError("Budget limit cannot be negative")
        category = self.get(category_id)
        self.gateway.update(
            Collection.categories.value, category_id, {"budget_limit_cents": limit_cents}
        )
        return category.model_copy(update={"budget_limit_cents": limit_cents})

    def delete(self, category_id: str) -> None:
        self.get(category_id)
        self.gateway.delete(Collection.categories.value, category_id)

    def suggest(self, description: str) -> Optional[str]:
        return suggest_category(description, self.list_all())


class TransactionService(OwnerScopedService):
    @degrade_gracefully(list)
    def list_all(self) -> list[Transaction]:
        txns = self._load_all(Collection.transactions, Transaction)
        return sorted(txns, key=lambda t: (t.date, t.id), reverse=True)

    def get(self, transaction_id: str) -> Transaction:
        return self._load(Collection.transactions, Transaction, transaction_id)

    def _account(self, account_id: str) -> Account:
        return self._load(Collection.accounts, Account, account_id)

    def _previous_account(self, txn: Transaction) -> Optional[Account]:
        try:
            return self._account(txn.account_id)
        except NotFound:
            if txn.is_paid:
                logger.warning(
                    f"reversal_skipped: transaction_id={txn.id} "
                    f"missing_account_id={txn.account_id}"
                )
            return None

    def _check_references(
        self,
        data: TransactionIn,
        previous: Optional[Transaction] = None,
        *,
        check_category: bool = True,
    ) -> Account:
        account = self._account(data.account_id)
        if data.type == TransactionType.transfer and data.destination_account_id:
            self._account(data.destination_account_id)
        category_changed = previous is None or previous.category_id != data.category_id
        if check_category and data.category_id and category_changed:
            self._load(Collection.categories, Category, data.category_id)
        return account

    def _balance_operations(
        self, changes: dict[str, int], accounts: dict[str, Account]
    ) -> list[Operation]:
        return [
            Operation.update(
                Collection.accounts.value,
                account_id,
                {"balance_cents": accounts[account_id].balance_cents + delta},
            )
            for account_id, delta in changes.items()
        ]

    def prepare_create(
        self,
        data: Union[TransactionIn, dict[str, Any]],
        *,
        recurring_id: Optional[str] = None,
        check_category: bool = True,
    ) -> tuple[Transaction, list[Operation]]:
        """Transaction plus the writes that must land together to create it.

        ``check_category=False`` keeps a dangling category reference as is;
        recurring templates may outlive the category they were filed under.
        """
        data = parse_payload(TransactionIn, data)
        account = self._check_references(data, check_category=check_category)
        txn = Transaction(
            id=new_id(),
            owner_id=self.owner_id,
            recurring_id=recurring_id,
            **data.model_dump(),
        )
        changes = ledger.plan_balance_changes(None, None, txn, account)
        operations = [Operation.put(Collection.transactions.value, txn.id, txn.to_record())]
        operations.extend(self._balance_operations(changes, {account.id: account}))
        return txn, operations

    def create(self, data: Union[TransactionIn, dict[str, Any]]) -> Transaction:
        txn, operations = self.prepare_create(data)
        self.gateway.commit_atomic(operations)
        return txn

    def update(
        self, transaction_id: str, data: Union[TransactionIn, dict[str, Any]]
    ) -> Transaction:
        data = parse_payload(TransactionIn, data)
        old = self.get(transaction_id)
        new_account = self._check_references(data, previous=old)
        old_account = (
            new_account if old.account_id == new_account.id else self._previous_account(old)
        )

        new = Transaction(
            id=old.id,
            owner_id=self.owner_id,
            recurring_id=old.recurring_id,
            **data.model_dump(),
        )
        changes = ledger.plan_balance_changes(old, old_account, new, new_account)
        accounts = {new_account.id: new_account}
        if old_account is not None:
            accounts[old_account.id] = old_account

        operations = self._balance_operations(changes, accounts)
        operations.append(Operation.put(Collection.transactions.value, new.id, new.to_record()))
        self.gateway.commit_atomic(operations)
        return new

    def set_paid(self, transaction_id: str, is_paid: bool = True) -> Transaction:
        txn = self.get(transaction_id)
        payload = txn.model_dump(include=set(TransactionIn.model_fields))
        payload["is_paid"] = is_paid
        return self.update(transaction_id, payload)

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        account = self._previous_account(txn)
        changes = ledger.plan_balance_changes(txn, account, None, None)
        operations = self._balance_operations(
            changes, {account.id: account} if account else {}
        )
        operations.append(Operation.delete(Collection.transactions.value, txn.id))
        self.gateway.commit_atomic(operations)


class RecurrenceExpander(OwnerScopedService):
    """Turns due templates into unpaid transactions, one period per pass."""

    def _active_templates(self) -> list[RecurringTransaction]:
        templates = [
            t
            for t in self._load_all(Collection.recurring, RecurringTransaction)
            if t.active
        ]
        templates.sort(key=lambda t: (t.next_due_date, t.id))
        return templates

    def run(self, today: Optional[date] = None) -> ExpansionResult:
        today = today or local_today()
        result = ExpansionResult()
        for template in self._active_templates():
            if template.next_due_date > today:
                result.skipped += 1
                continue
            try:
                txn = self._materialize(template)
            except Exception:
                logger.exception(
                    f"recurring_failed: owner_id={self.owner_id} "
                    f"template_id={template.id}"
                )
                result.failed.append(template.id)
                continue
            result.generated.append(txn)
        logger.info(
            f"recurring_run: owner_id={self.owner_id} "
            f"generated={len(result.generated)} failed={len(result.failed)}"
        )
        return result

    def _materialize(self, template: RecurringTransaction) -> Transaction:
        payload = TransactionIn(
            value_cents=template.value_cents,
            date=template.next_due_date,
            description=template.description,
            category_id=template.category_id,
            account_id=template.account_id,
            destination_account_id=template.destination_account_id,
            type=template.type,
            is_paid=False,
            is_recurring=True,
        )
        txn, operations = TransactionService(self.gateway, self.owner).prepare_create(
            payload, recurring_id=template.id, check_category=False
        )
        next_due = calculate_next_date(template.frequency, template.next_due_date)
        operations.append(
            Operation.update(
                Collection.recurring.value,
                template.id,
                {
                    "next_due_date": next_due.isoformat(),
                    "last_generated_at": local_now().isoformat(),
                },
            )
        )
        self.gateway.commit_atomic(operations)
        logger.info(
            f"recurring_posted: template_id={template.id} transaction_id={txn.id} "
            f"date={txn.date.isoformat()} next_due_date={next_due.isoformat()}"
        )
        return txn


class RecurringTransactionService(OwnerScopedService):
    @degrade_gracefully(list)
    def list_all(self) -> list[RecurringTransaction]:
        templates = self._load_all(Collection.recurring, RecurringTransaction)
        return sorted(templates, key=lambda t: (t.next_due_date, t.id))

    def get(self, template_id: str) -> RecurringTransaction:
        return self._load(Collection.recurring, RecurringTransaction, template_id)

    def create(
        self, data: Union[RecurringTransactionIn, dict[str, Any]]
    ) -> RecurringTransaction:
        data = parse_payload(RecurringTransactionIn, data)
        self._load(Collection.accounts, Account, data.account_id)
        if data.destination_account_id:
            self._load(Collection.accounts, Account, data.destination_account_id)
        if data.category_id:
            self._load(Collection.categories, Category, data.category_id)
        template = RecurringTransaction(
            id=new_id(), owner_id=self.owner_id, **data.model_dump()
        )
        self.gateway.put(Collection.recurring.value, template.id, template.to_record())
        return template

    def set_active(self, template_id: str, active: bool) -> RecurringTransaction:
        template = self.get(template_id)
        self.gateway.update(Collection.recurring.value, template_id, {"active": active})
        return template.model_copy(update={"active": active})

    def delete(self, template_id: str) -> None:
        self.get(template_id)
        self.gateway.delete(Collection.recurring.value, template_id)

    def run_expansion(self, today: Optional[date] = None) -> ExpansionResult:
        return RecurrenceExpander(self.gateway, self.owner).run(today)


class GoalService(OwnerScopedService):
    @degrade_gracefully(list)
    def list_all(self) -> list[Goal]:
        return self._load_all(Collection.goals, Goal)

    def get(self, goal_id: str) -> Goal:
        return self._load(Collection.goals, Goal, goal_id)

    def create(self, data: Union[GoalIn, dict[str, Any]]) -> Goal:
        data = parse_payload(GoalIn, data)
        goal = Goal(id=new_id(), owner_id=self.owner_id, **data.model_dump())
        self.gateway.put(Collection.goals.value, goal.id, goal.to_record())
        return goal

    def deposit(self, goal_id: str, data: Union[GoalDepositIn, dict[str, Any]]) -> Goal:
        data = parse_payload(GoalDepositIn, data)
        goal = self.get(goal_id)
        entry = GoalDeposit(id=new_id(), date=local_now(), amount_cents=data.amount_cents)
        history = [*goal.history, entry]
        updated = goal.model_copy(
            update={
                "history": history,
                "current_amount_cents": sum(h.amount_cents for h in history),
            }
        )
        record = updated.to_record()
        self.gateway.update(
            Collection.goals.value,
            goal_id,
            {
                "history": record["history"],
                "current_amount_cents": record["current_amount_cents"],
            },
        )
        return updated

    def delete(self, goal_id: str) -> None:
        self.get(goal_id)
        self.gateway.delete(Collection.goals.value, goal_id)


class NotificationService(OwnerScopedService):
    def get_preferences(self) -> NotificationPreferences:
        record = self.gateway.get_by_id(Collection.preferences.value, self.owner_id)
        if record is None:
            return NotificationPreferences(id=self.owner_id, owner_id=self.owner_id)
        try:
            return NotificationPreferences.model_validate(record)
        except PydanticValidationError:
            logger.warning(
                f"record_unreadable: collection={Collection.preferences.value} "
                f"id={self.owner_id} owner_id={self.owner_id}"
            )
            return NotificationPreferences(id=self.owner_id, owner_id=self.owner_id)

    def save_preferences(
        self, data: Union[NotificationPreferencesIn, dict[str, Any]]
    ) -> NotificationPreferences:
        data = parse_payload(NotificationPreferencesIn, data)
        prefs = NotificationPreferences(
            id=self.owner_id, owner_id=self.owner_id, **data.model_dump()
        )
        self.gateway.put(Collection.preferences.value, prefs.id, prefs.to_record())
        return prefs

    @degrade_gracefully(list)
    def check_upcoming_alerts(self, today: Optional[date] = None) -> list[AppNotification]:
        transactions = self._load_all(Collection.transactions, Transaction)
        return alerts.check_upcoming_alerts(
            transactions,
            today or local_today(),
            window_days=get_settings().alert_window_days,
            preferences=self.get_preferences(),
        )

    @degrade_gracefully(list)
    def recurring_notifications(self, generated: list[Transaction]) -> list[AppNotification]:
        return alerts.recurring_notifications(generated, self.get_preferences())


class DashboardService(OwnerScopedService):
    @degrade_gracefully(Balances)
    def calculate_balances(self, today: Optional[date] = None) -> Balances:
        return ledger.calculate_balances(
            self._load_all(Collection.accounts, Account),
            self._load_all(Collection.transactions, Transaction),
            today or local_today(),
        )

    @degrade_gracefully(list)
    def monthly_history(
        self, months: Optional[int] = None, today: Optional[date] = None
    ) -> list[MonthlyHistoryEntry]:
        return ledger.monthly_history(
            self._load_all(Collection.transactions, Transaction),
            months or get_settings().history_months,
            today or local_today(),
        )

    @degrade_gracefully(list)
    def expenses_by_category(
        self, months: Optional[int] = None, today: Optional[date] = None
    ) -> list[CategoryExpense]:
        return ledger.expenses_by_category(
            self._load_all(Collection.transactions, Transaction),
            self._load_all(Collection.categories, Category),
            months or get_settings().history_months,
            today or local_today(),
        )

    @degrade_gracefully(list)
    def budget_progress(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[BudgetProgress]:
        today = local_today()
        return ledger.budget_progress(
            self._load_all(Collection.categories, Category),
            self._load_all(Collection.transactions, Transaction),
            year or today.year,
            month or today.month,
        )

    @degrade_gracefully(str)
    def assistant_context(self, today: Optional[date] = None) -> str:
        """Plain-text snapshot of the owner's finances for the chat assistant."""
        today = today or local_today()
        accounts = self._load_all(Collection.accounts, Account)
        categories = {c.id: c for c in self._load_all(Collection.categories, Category)}
        transactions = self._load_all(Collection.transactions, Transaction)
        balances = ledger.calculate_balances(accounts, transactions, today)

        month = current_month(today)
        paid_this_month = [t for t in transactions if t.is_paid and month.contains(t.date)]
        paid_income = sum(
            t.value_cents for t in paid_this_month if t.type == TransactionType.income
        )
        paid_expenses = [t for t in paid_this_month if t.type == TransactionType.expense]

        by_category: dict[Optional[str], int] = {}
        for txn in paid_expenses:
            by_category[txn.category_id] = by_category.get(txn.category_id, 0) + txn.value_cents
        top3 = sorted(by_category.items(), key=lambda item: item[1], reverse=True)[:3]

        cards = sum(1 for a in accounts if a.is_credit_card)
        lines = [
            "Resumo atual do app:",
            f"- Contas/Carteiras cadastradas: {len(accounts)} "
            f"(Carteiras/contas: {len(accounts) - cards} | Cartões: {cards})",
            f"- Saldo real (sem cartão): {format_brl(balances.real_balance_cents)}",
            f"- Saldo projetado (considerando cartão): {format_brl(balances.projected_balance_cents)}",
            f"- Receitas pagas no mês: {format_brl(paid_income)}",
            f"- Despesas pagas no mês: {format_brl(sum(t.value_cents for t in paid_expenses))}",
        ]
        if top3:
            lines.append("- Top despesas do mês:")
            for category_id, value in top3:
                category = categories.get(category_id) if category_id else None
                name = category.name if category else ledger.UNCATEGORIZED_NAME
                lines.append(f"- {name}: {format_brl(value)}")
        return "\n".join(lines)


def initialize_owner_data(gateway: PersistenceGateway, owner: OwnerContext) -> bool:
    """Seed default accounts and categories for an owner that has none."""
    owner = require_owner(owner)
    seeded = False
    for collection, model, defaults in (
        (Collection.categories, Category, DEFAULT_CATEGORIES),
        (Collection.accounts, Account, DEFAULT_ACCOUNTS),
    ):
        if gateway.query_by_owner(collection.value, owner.owner_id):
            continue
        operations = []
        for values in defaults:
            record = model(id=new_id(), owner_id=owner.owner_id, **values)
            operations.append(Operation.put(collection.value, record.id, record.to_record()))
        gateway.commit_atomic(operations)
        logger.info(
            f"seeded_defaults: owner_id={owner.owner_id} "
            f"collection={collection.value} count={len(operations)}"
        )
        seeded = True
    return seeded


@dataclass
class SessionStart:
    seeded: bool
    expansion: ExpansionResult
    notifications: list[AppNotification] = field(default_factory=list)


def start_session(
    gateway: PersistenceGateway,
    owner: OwnerContext,
    today: Optional[date] = None,
) -> SessionStart:
    """Login sequence: seed defaults when enabled, then materialize due templates."""
    owner = require_owner(owner)
    today = today or local_today()
    seeded = False
    if get_settings().seed_defaults:
        seeded = initialize_owner_data(gateway, owner)
    expansion = RecurrenceExpander(gateway, owner).run(today)
    notifier = NotificationService(gateway, owner)
    notifications = alerts.sort_notifications(
        [
            *notifier.check_upcoming_alerts(today),
            *notifier.recurring_notifications(expansion.generated),
        ]
    )
    return SessionStart(seeded=seeded, expansion=expansion, notifications=notifications)
