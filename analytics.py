"""
Aggregations behind the dashboard.

Every function here is pure: it takes a snapshot of records already fetched
from storage plus an explicit ``now`` and recomputes its view from scratch.
Nothing is cached between calls and the inputs are never modified.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Sequence

from schemas import (
    BudgetComparison,
    BudgetWithCategory,
    Category,
    CategorySpend,
    MonthlyExpense,
    Summary,
    TransactionWithCategory,
    WeeklySpend,
)


ZERO = Decimal("0.00")
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
WEEK_LABELS = ("Week 1", "Week 2", "Week 3", "Week 4")


def in_month(tx: TransactionWithCategory, month: int, year: int) -> bool:
    return tx.date.month == month and tx.date.year == year


def current_month_expenses(transactions: Iterable[TransactionWithCategory], now: datetime) -> List[TransactionWithCategory]:
    return [t for t in transactions if t.type == "expense" and in_month(t, now.month, now.year)]


def total(transactions: Iterable[TransactionWithCategory]) -> Decimal:
    return sum((t.amount for t in transactions), ZERO)


def week_label(day: int) -> str:
    """Week bucket for a day of month; Week 4 takes everything from the 22nd on."""
    if day <= 7:
        return WEEK_LABELS[0]
    if day <= 14:
        return WEEK_LABELS[1]
    if day <= 21:
        return WEEK_LABELS[2]
    return WEEK_LABELS[3]


def savings_rate(balance: Decimal, income: Decimal) -> int:
    if income <= 0:
        return 0
    rate = balance * 100 / income
    return int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def summarize(transactions: Sequence[TransactionWithCategory], now: datetime) -> Summary:
    """Income, expenses, balance and savings rate for the calendar month of ``now``."""
    this_month = [t for t in transactions if in_month(t, now.month, now.year)]
    income = total(t for t in this_month if t.type == "income")
    expenses = total(t for t in this_month if t.type == "expense")
    balance = income - expenses
    return Summary(
        balance=balance,
        monthly_income=income,
        monthly_expenses=expenses,
        savings_rate=savings_rate(balance, income),
    )


def monthly_expenses(transactions: Sequence[TransactionWithCategory], year: int) -> List[MonthlyExpense]:
    """Expense totals for each month of ``year``, January first, zero-filled."""
    totals = {month: ZERO for month in range(1, 13)}
    for t in transactions:
        if t.type == "expense" and t.date.year == year:
            totals[t.date.month] += t.amount
    return [MonthlyExpense(month=MONTH_LABELS[month - 1], amount=amount) for month, amount in totals.items()]


def category_breakdown(
    transactions: Sequence[TransactionWithCategory],
    categories: Sequence[Category],
    now: datetime,
) -> List[CategorySpend]:
    """Current-month spending per category. Categories with no spending are left out."""
    expenses = current_month_expenses(transactions, now)
    breakdown = []
    for category in categories:
        value = total(t for t in expenses if t.category_id == category.id)
        if value > 0:
            breakdown.append(CategorySpend(name=category.name, value=value, color=category.color))
    return breakdown


def weekly_trend(transactions: Sequence[TransactionWithCategory], now: datetime) -> List[WeeklySpend]:
    totals = {label: ZERO for label in WEEK_LABELS}
    for t in current_month_expenses(transactions, now):
        totals[week_label(t.date.day)] += t.amount
    return [WeeklySpend(week=label, amount=amount) for label, amount in totals.items()]


def budget_comparison(
    budgets: Sequence[BudgetWithCategory],
    transactions: Sequence[TransactionWithCategory],
    now: datetime,
) -> List[BudgetComparison]:
    """
    Budgeted amount against actual spending, one row per budget.

    Actual spending is always taken from the calendar month of ``now``; the
    budget's own month and year are not consulted. A budget row set up for a
    past period is therefore compared with the present month.
    """
    expenses = current_month_expenses(transactions, now)
    rows = []
    for budget in budgets:
        actual = total(t for t in expenses if t.category_id == budget.category_id)
        rows.append(
            BudgetComparison(
                category=budget.category.name if budget.category else "Unknown",
                budget=budget.amount,
                actual=actual,
            )
        )
    return rows
