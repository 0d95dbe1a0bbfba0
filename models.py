from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from normalize import coerce_int, normalize_record, to_date


class AccountType(str, Enum):
    checking = "checking"
    cash = "cash"
    investment = "investment"
    credit_card = "credit_card"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class RecurrenceFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class AlertSeverity(str, Enum):
    danger = "danger"
    warning = "warning"
    info = "info"
    success = "success"


class Collection(str, Enum):
    accounts = "accounts"
    categories = "categories"
    transactions = "transactions"
    recurring = "recurring_transactions"
    goals = "goals"
    preferences = "preferences"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Document(Base, TimestampMixin):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(40), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_documents_collection_owner", "collection", "owner_id"),
    )


def _lower_enum(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class OwnedRecord(BaseModel):
    """A stored document. Validation doubles as the normalization step."""

    model_config = ConfigDict(extra="ignore")

    legacy_keys: ClassVar[dict[str, str]] = {}
    legacy_amounts: ClassVar[dict[str, str]] = {}

    id: str
    owner_id: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy(cls, data: Any) -> Any:
        return normalize_record(
            data,
            renames={"userId": "owner_id", **cls.legacy_keys},
            amounts=cls.legacy_amounts,
        )

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Account(OwnedRecord):
    legacy_keys = {"closingDay": "closing_day", "dueDay": "due_day"}
    legacy_amounts = {"balance": "balance_cents", "limit": "limit_cents"}

    name: str = ""
    type: AccountType = AccountType.checking
    balance_cents: int = 0
    icon: str = "wallet"
    closing_day: Optional[int] = None
    due_day: Optional[int] = None
    limit_cents: Optional[int] = None

    normalize_type = field_validator("type", mode="before")(_lower_enum)

    @field_validator("balance_cents", mode="before")
    @classmethod
    def coerce_balance(cls, value: Any) -> int:
        return coerce_int(value, 0)

    @field_validator("closing_day", "due_day", "limit_cents", mode="before")
    @classmethod
    def coerce_optional(cls, value: Any) -> Optional[int]:
        return coerce_int(value)

    @property
    def is_credit_card(self) -> bool:
        return self.type == AccountType.credit_card


class Category(OwnedRecord):
    legacy_keys = {"parentId": "parent_id"}
    legacy_amounts = {"budgetLimit": "budget_limit_cents"}

    name: str = ""
    color: str = "#9ca3af"
    icon: str = "circle-dashed"
    parent_id: Optional[str] = None
    budget_limit_cents: Optional[int] = None

    @field_validator("budget_limit_cents", mode="before")
    @classmethod
    def coerce_limit(cls, value: Any) -> Optional[int]:
        return coerce_int(value)


class Installments(BaseModel):
    current: int = Field(..., ge=1)
    total: int = Field(..., ge=1)

    @model_validator(mode="after")
    def check_current_within_total(self) -> "Installments":
        if self.current > self.total:
            raise ValueError("Installment number exceeds installment count")
        return self


class Transaction(OwnedRecord):
    legacy_keys = {
        "categoryId": "category_id",
        "accountId": "account_id",
        "destinationAccountId": "destination_account_id",
        "isPaid": "is_paid",
        "isRecurring": "is_recurring",
        "recurringId": "recurring_id",
    }
    legacy_amounts = {"value": "value_cents"}

    value_cents: int = 0
    date: date
    description: str = ""
    category_id: Optional[str] = None
    account_id: str
    destination_account_id: Optional[str] = None
    type: TransactionType
    is_paid: bool = False
    is_recurring: bool = False
    recurring_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    installments: Optional[Installments] = None

    normalize_type = field_validator("type", mode="before")(_lower_enum)
    normalize_date = field_validator("date", mode="before")(to_date)

    @field_validator("value_cents", mode="before")
    @classmethod
    def coerce_value(cls, value: Any) -> int:
        return coerce_int(value, 0)


class RecurringTransaction(OwnedRecord):
    legacy_keys = {
        "categoryId": "category_id",
        "accountId": "account_id",
        "destinationAccountId": "destination_account_id",
        "nextDueDate": "next_due_date",
        "lastGeneratedDate": "last_generated_at",
    }
    legacy_amounts = {"value": "value_cents"}

    description: str = ""
    value_cents: int = 0
    type: TransactionType
    category_id: Optional[str] = None
    account_id: str
    destination_account_id: Optional[str] = None
    frequency: RecurrenceFrequency
    next_due_date: date
    active: bool = True
    last_generated_at: Optional[datetime] = None

    normalize_type = field_validator("type", "frequency", mode="before")(_lower_enum)
    normalize_date = field_validator("next_due_date", mode="before")(to_date)

    @field_validator("value_cents", mode="before")
    @classmethod
    def coerce_value(cls, value: Any) -> int:
        return coerce_int(value, 0)


class GoalDeposit(BaseModel):
    id: str
    date: datetime
    amount_cents: int

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy(cls, data: Any) -> Any:
        return normalize_record(data, renames={}, amounts={"amount": "amount_cents"})


class Goal(OwnedRecord):
    legacy_amounts = {
        "targetAmount": "target_amount_cents",
        "currentAmount": "current_amount_cents",
    }

    name: str = ""
    target_amount_cents: int = 0
    current_amount_cents: int = 0
    deadline: Optional[date] = None
    icon: str = "piggy-bank"
    history: list[GoalDeposit] = Field(default_factory=list)

    normalize_deadline = field_validator("deadline", mode="before")(to_date)

    @property
    def progress_percent(self) -> float:
        if self.target_amount_cents <= 0:
            return 0.0
        return self.current_amount_cents / self.target_amount_cents * 100


class NotificationPreferences(OwnedRecord):
    legacy_keys = {
        "alertOverdue": "alert_overdue",
        "alertUpcoming": "alert_upcoming",
        "alertRecurring": "alert_recurring",
    }

    alert_overdue: bool = True
    alert_upcoming: bool = True
    alert_recurring: bool = True
