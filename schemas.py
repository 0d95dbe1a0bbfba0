from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    AccountType,
    AlertSeverity,
    Installments,
    RecurrenceFrequency,
    TransactionType,
)


def _require_transfer_target(
    txn_type: TransactionType, account_id: str, destination_account_id: Optional[str]
) -> None:
    if txn_type != TransactionType.transfer:
        return
    if not destination_account_id:
        raise ValueError("Transfers require a destination account")
    if destination_account_id == account_id:
        raise ValueError("Transfer destination must differ from source")


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance_cents: int = 0
    icon: str = Field(default="wallet", max_length=40)
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    limit_cents: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_card_fields(self) -> "AccountIn":
        card_fields = (self.closing_day, self.due_day, self.limit_cents)
        if self.type != AccountType.credit_card and any(
            v is not None for v in card_fields
        ):
            raise ValueError("Closing day, due day and limit apply to credit cards only")
        return self


class AccountUpdateIn(BaseModel):
    """Partial account edit; only the fields sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    balance_cents: Optional[int] = None
    icon: Optional[str] = Field(default=None, max_length=40)
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    limit_cents: Optional[int] = Field(default=None, ge=0)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="#9ca3af", max_length=9)
    icon: str = Field(default="circle-dashed", max_length=40)
    parent_id: Optional[str] = None
    budget_limit_cents: Optional[int] = Field(default=None, ge=0)


class TransactionIn(BaseModel):
    value_cents: int = Field(..., gt=0)
    date: date
    description: str = Field(default="", max_length=200)
    category_id: Optional[str] = None
    account_id: str = Field(..., min_length=1)
    destination_account_id: Optional[str] = None
    type: TransactionType
    is_paid: bool = False
    is_recurring: bool = False
    tags: list[str] = Field(default_factory=list)
    installments: Optional[Installments] = None

    @model_validator(mode="after")
    def check_transfer_target(self) -> "TransactionIn":
        _require_transfer_target(self.type, self.account_id, self.destination_account_id)
        return self


class RecurringTransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    value_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: Optional[str] = None
    account_id: str = Field(..., min_length=1)
    destination_account_id: Optional[str] = None
    frequency: RecurrenceFrequency
    next_due_date: date
    active: bool = True

    @model_validator(mode="after")
    def check_transfer_target(self) -> "RecurringTransactionIn":
        _require_transfer_target(self.type, self.account_id, self.destination_account_id)
        return self


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_amount_cents: int = Field(..., gt=0)
    deadline: Optional[date] = None
    icon: str = Field(default="piggy-bank", max_length=40)


class GoalDepositIn(BaseModel):
    amount_cents: int = Field(..., gt=0)


class BudgetLimitIn(BaseModel):
    budget_limit_cents: Optional[int] = Field(default=None, ge=0)


class PaidFlagIn(BaseModel):
    is_paid: bool = True


class SuggestionIn(BaseModel):
    description: str = Field(default="", max_length=200)


class NotificationPreferencesIn(BaseModel):
    alert_overdue: bool = True
    alert_upcoming: bool = True
    alert_recurring: bool = True


class Balances(BaseModel):
    real_balance_cents: int = 0
    credit_card_bill_cents: int = 0
    projected_balance_cents: int = 0
    monthly_income_cents: int = 0
    monthly_expense_cents: int = 0


class MonthlyHistoryEntry(BaseModel):
    year: int
    month: int
    label: str
    income_cents: int = 0
    expense_cents: int = 0
    net_cents: int = 0


class CategoryExpense(BaseModel):
    category_id: Optional[str]
    name: str
    color: str
    value_cents: int


class BudgetProgress(BaseModel):
    category_id: str
    name: str
    color: str
    limit_cents: Optional[int]
    used_cents: int
    percent: float
    is_over: bool
    status: Literal["none", "ok", "warning", "over"]


class AppNotification(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    message: str
    type: AlertSeverity
    date: date
    transaction_id: Optional[str] = None
