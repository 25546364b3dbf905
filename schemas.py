"""
Database Schemas for the Finance Tracker

Each Pydantic model corresponds to a MongoDB collection (plural, lowercased
entity name) or to an analytics payload. Field names are snake_case in Python
and camelCase on the wire and in stored documents.
"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("amount out of range")


def naive_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC, which is also what pymongo hands back.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


Money = Annotated[Decimal, AfterValidator(to_cents)]
Timestamp = Annotated[datetime, AfterValidator(naive_utc)]
TransactionType = Literal["income", "expense"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Changes(CamelModel):
    """Partial update payload; only fields the client actually sent are applied."""

    @model_validator(mode="after")
    def reject_nulls(self):
        # category_id may be cleared explicitly, every other field needs a value
        cleared = sorted(k for k in self.model_fields_set if k != "category_id" and getattr(self, k) is None)
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self

    def changes(self, by_alias: bool = False) -> dict:
        return self.model_dump(exclude_unset=True, by_alias=by_alias)


# Categories

class CategoryCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., pattern=r"^#(?:[0-9a-fA-F]{3}){1,2}$")
    icon: str = Field(..., min_length=1)


class Category(CategoryCreate):
    id: int


# Transactions

class TransactionCreate(CamelModel):
    description: str = Field(..., min_length=1)
    amount: Money = Field(..., ge=CENT, lt=Decimal("100000000"))
    date: Timestamp
    category_id: Optional[int] = None
    type: TransactionType


class TransactionUpdate(Changes):
    description: Optional[str] = Field(None, min_length=1)
    amount: Optional[Money] = Field(None, ge=CENT, lt=Decimal("100000000"))
    date: Optional[Timestamp] = None
    category_id: Optional[int] = None
    type: Optional[TransactionType] = None


class Transaction(TransactionCreate):
    id: int
    created_at: datetime


class TransactionWithCategory(Transaction):
    category: Category


# Budgets

class BudgetCreate(CamelModel):
    category_id: Optional[int] = None
    amount: Money
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1000, le=9999)


class BudgetUpdate(Changes):
    category_id: Optional[int] = None
    amount: Optional[Money] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=1000, le=9999)


class Budget(BudgetCreate):
    id: int
    created_at: datetime


class BudgetWithCategory(Budget):
    category: Optional[Category] = None


# Users (not exposed over HTTP)

class UserCreate(CamelModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=6)


class User(CamelModel):
    id: int
    username: str
    password_hash: str


# Analytics payloads

class Summary(CamelModel):
    balance: Decimal
    monthly_income: Decimal
    monthly_expenses: Decimal
    savings_rate: int


class MonthlyExpense(CamelModel):
    month: str
    amount: Decimal


class CategorySpend(CamelModel):
    name: str
    value: Decimal
    color: str


class WeeklySpend(CamelModel):
    week: str
    amount: Decimal


class BudgetComparison(CamelModel):
    category: str
    budget: Decimal
    actual: Decimal

    @property
    def remaining(self) -> Decimal:
        """Budget left over; negative when spending exceeded the budget."""
        return self.budget - self.actual

    @property
    def over_budget(self) -> bool:
        return self.remaining < 0
