from datetime import date

from aggregations import (
    category_breakdown,
    monthly_series,
    plan_progress,
    recent,
    summarize,
    transactions_in_range,
)
from models import TransactionType
from schemas import FinancialPlan, Transaction


def _txn(
    txn_type: TransactionType,
    amount: float,
    category: str,
    on: date,
    created_at: int = 0,
) -> Transaction:
    return Transaction(
        id=f"t{created_at}-{on.isoformat()}-{category}",
        user_id="u1",
        type=txn_type,
        amount=amount,
        category=category,
        date=on,
        created_at=created_at,
    )


def _plan(start: date, end: date, target_income: float, target_savings: float) -> FinancialPlan:
    return FinancialPlan(
        id="p1",
        user_id="u1",
        name="Q1",
        start_date=start,
        end_date=end,
        target_income=target_income,
        target_savings=target_savings,
        created_at=0,
    )


def test_summary_of_mixed_transactions() -> None:
    txns = [
        _txn(TransactionType.income, 5000, "Salary", date(2024, 3, 1)),
        _txn(TransactionType.expense, 1200, "Food", date(2024, 3, 2)),
        _txn(TransactionType.expense, 300, "Transportation", date(2024, 3, 3)),
    ]

    summary = summarize(txns)

    assert summary.total_income == 5000
    assert summary.total_expense == 1500
    assert summary.balance == 3500


def test_empty_inputs_yield_zero_and_empty_series() -> None:
    summary = summarize([])

    assert (summary.total_income, summary.total_expense, summary.balance) == (0, 0, 0)
    assert monthly_series([]) == []
    assert category_breakdown([]) == []


def test_monthly_series_is_chronological_with_english_labels() -> None:
    txns = [
        _txn(TransactionType.expense, 100, "Food", date(2024, 2, 10)),
        _txn(TransactionType.income, 1000, "Salary", date(2023, 12, 31)),
        _txn(TransactionType.income, 2000, "Salary", date(2024, 2, 1)),
        _txn(TransactionType.expense, 50, "Food", date(2024, 2, 28)),
    ]

    series = monthly_series(txns)

    assert [point.label for point in series] == ["Dec 2023", "Feb 2024"]
    assert series[0].income == 1000
    assert series[0].expense == 0
    assert series[1].income == 2000
    assert series[1].expense == 150


def test_category_breakdown_only_counts_expenses_in_first_seen_order() -> None:
    txns = [
        _txn(TransactionType.expense, 40, "Food", date(2024, 1, 5)),
        _txn(TransactionType.income, 900, "Salary", date(2024, 1, 1)),
        _txn(TransactionType.expense, 10, "Utilities", date(2024, 1, 6)),
        _txn(TransactionType.expense, 60, "Food", date(2024, 1, 7)),
    ]

    breakdown = category_breakdown(txns)

    assert [(item.name, item.value) for item in breakdown] == [
        ("Food", 100),
        ("Utilities", 10),
    ]


def test_range_filter_is_inclusive_on_both_ends() -> None:
    txns = [
        _txn(TransactionType.expense, 1, "Food", date(2024, 1, 1)),
        _txn(TransactionType.expense, 2, "Food", date(2024, 1, 15)),
        _txn(TransactionType.expense, 3, "Food", date(2024, 1, 31)),
        _txn(TransactionType.expense, 4, "Food", date(2024, 2, 1)),
    ]

    selected = transactions_in_range(txns, date(2024, 1, 1), date(2024, 1, 31))

    assert [t.amount for t in selected] == [1, 2, 3]
    assert len(transactions_in_range(txns)) == 4


def test_plan_progress_counts_only_transactions_inside_the_plan() -> None:
    plan = _plan(date(2024, 1, 1), date(2024, 1, 31), 10000, 4000)
    txns = [
        _txn(TransactionType.income, 5000, "Salary", date(2024, 1, 1)),
        _txn(TransactionType.expense, 3000, "Housing", date(2024, 1, 31)),
        _txn(TransactionType.income, 99999, "Gift", date(2024, 2, 1)),
    ]

    progress = plan_progress(plan, txns)

    assert progress.actual_income == 5000
    assert progress.actual_savings == 2000
    assert progress.income_progress == 50
    assert progress.savings_progress == 50
    assert progress.is_savings_negative is False


def test_plan_progress_is_capped_at_100() -> None:
    plan = _plan(date(2024, 1, 1), date(2024, 1, 31), 1000, 100)
    txns = [_txn(TransactionType.income, 5000, "Salary", date(2024, 1, 10))]

    progress = plan_progress(plan, txns)

    assert progress.income_progress == 100
    assert progress.savings_progress == 100


def test_negative_savings_are_flagged_and_not_clamped() -> None:
    plan = _plan(date(2024, 1, 1), date(2024, 1, 31), 1000, 1000)
    txns = [
        _txn(TransactionType.income, 500, "Salary", date(2024, 1, 2)),
        _txn(TransactionType.expense, 1000, "Housing", date(2024, 1, 3)),
    ]

    progress = plan_progress(plan, txns)

    assert progress.actual_savings == -500
    assert progress.savings_progress == -50
    assert progress.is_savings_negative is True


def test_zero_targets_count_as_met_unless_actual_is_negative() -> None:
    plan = _plan(date(2024, 1, 1), date(2024, 1, 31), 0, 0)

    met = plan_progress(plan, [_txn(TransactionType.income, 10, "Gift", date(2024, 1, 5))])
    missed = plan_progress(plan, [_txn(TransactionType.expense, 10, "Food", date(2024, 1, 5))])

    assert met.income_progress == 100
    assert met.savings_progress == 100
    assert missed.income_progress == 100
    assert missed.savings_progress == 0


def test_recent_returns_newest_first_and_honours_limit() -> None:
    txns = [
        _txn(TransactionType.expense, i, "Food", date(2024, 1, i + 1), created_at=i)
        for i in range(12)
    ]

    latest = recent(txns)

    assert len(latest) == 10
    assert latest[0].date == date(2024, 1, 12)
    assert latest[-1].date == date(2024, 1, 3)


def test_reference_scenario_for_summary_series_breakdown_and_plan() -> None:
    txns = [
        _txn(TransactionType.income, 1000, "Salary", date(2024, 1, 5)),
        _txn(TransactionType.expense, 400, "Food", date(2024, 1, 10)),
        _txn(TransactionType.expense, 200, "Food", date(2024, 2, 1)),
    ]

    summary = summarize(txns)
    series = monthly_series(txns)
    progress = plan_progress(_plan(date(2024, 1, 1), date(2024, 1, 31), 1000, 500), txns)

    assert (summary.total_income, summary.total_expense, summary.balance) == (1000, 600, 400)
    assert [(p.label, p.income, p.expense) for p in series] == [
        ("Jan 2024", 1000, 400),
        ("Feb 2024", 0, 200),
    ]
    assert [(c.name, c.value) for c in category_breakdown(txns)] == [("Food", 600)]
    assert progress.actual_income == 1000
    assert progress.actual_savings == 600
    assert progress.income_progress == 100
    assert progress.savings_progress == 100
    assert progress.is_savings_negative is False
