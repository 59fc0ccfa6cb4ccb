"""Pure summaries over a list of transactions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Protocol

from models import TransactionType
from schemas import FinancialPlan, Transaction


_MONTH_ABBR = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class _Entry(Protocol):
    type: TransactionType
    amount: float
    category: str
    date: date


@dataclass(frozen=True)
class Summary:
    total_income: float
    total_expense: float
    balance: float


@dataclass(frozen=True)
class MonthlyPoint:
    label: str
    year: int
    month: int
    income: float
    expense: float


@dataclass(frozen=True)
class CategoryTotal:
    name: str
    value: float


@dataclass(frozen=True)
class PlanProgress:
    actual_income: float
    actual_savings: float
    income_progress: float
    savings_progress: float
    is_savings_negative: bool


def month_label(year: int, month: int) -> str:
    return f"{_MONTH_ABBR[month - 1]} {year}"


def summarize(transactions: Iterable[_Entry]) -> Summary:
    income = 0.0
    expense = 0.0
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += txn.amount
        else:
            expense += txn.amount
    return Summary(total_income=income, total_expense=expense, balance=income - expense)


def monthly_series(transactions: Iterable[_Entry]) -> list[MonthlyPoint]:
    totals: dict[tuple[int, int], list[float]] = {}
    for txn in transactions:
        bucket = totals.setdefault((txn.date.year, txn.date.month), [0.0, 0.0])
        if txn.type == TransactionType.income:
            bucket[0] += txn.amount
        else:
            bucket[1] += txn.amount
    return [
        MonthlyPoint(
            label=month_label(year, month),
            year=year,
            month=month,
            income=income,
            expense=expense,
        )
        for (year, month), (income, expense) in sorted(totals.items())
    ]


def category_breakdown(transactions: Iterable[_Entry]) -> list[CategoryTotal]:
    totals: dict[str, float] = {}
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        totals[txn.category] = totals.get(txn.category, 0.0) + txn.amount
    return [CategoryTotal(name=name, value=value) for name, value in totals.items()]


def transactions_in_range(
    transactions: Iterable[_Entry],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list:
    return [
        txn
        for txn in transactions
        if (start is None or txn.date >= start) and (end is None or txn.date <= end)
    ]


def _progress(actual: float, target: float) -> float:
    # a zero target counts as met unless the actual figure went negative
    if target == 0:
        return 100.0 if actual >= 0 else 0.0
    return min(100.0, actual / target * 100)


def plan_progress(plan: FinancialPlan, transactions: Iterable[_Entry]) -> PlanProgress:
    in_range = transactions_in_range(transactions, plan.start_date, plan.end_date)
    summary = summarize(in_range)
    actual_income = summary.total_income
    actual_savings = summary.balance
    return PlanProgress(
        actual_income=actual_income,
        actual_savings=actual_savings,
        income_progress=_progress(actual_income, plan.target_income),
        savings_progress=_progress(actual_savings, plan.target_savings),
        is_savings_negative=actual_savings < 0,
    )


def recent(transactions: Iterable[Transaction], limit: int = 10) -> list[Transaction]:
    ordered = sorted(transactions, key=lambda t: (t.date, t.created_at), reverse=True)
    return ordered[:limit]
