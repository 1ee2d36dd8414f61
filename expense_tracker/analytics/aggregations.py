"""
Expense Aggregations

DESIGN DECISION: Every chart and statistic is a pure function of an
expense list. The state container recomputes them whenever the list
changes instead of patching previous results, so there is nothing to
drift out of sync.

Only ``total_in_currency`` converts between currencies. The trend, the
category breakdown and group totals add raw amounts and report which
currencies went in.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from expense_tracker.currency import TWO_PLACES, convert_between
from expense_tracker.models.analytics import (
    CategoryInsight,
    ExpenseSummary,
    MonthlyTrendPoint,
)
from expense_tracker.models.expense import Expense


MONTH_NAMES = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def monthly_trend(expenses: Iterable[Expense]) -> list[MonthlyTrendPoint]:
    """
    Sum amounts into twelve month-of-year buckets, Jan..Dec.

    Not year-aware: March 2023 and March 2024 land in the same bucket.
    """
    buckets = [Decimal("0")] * 12
    for expense in expenses:
        buckets[expense.date.month - 1] += expense.amount
    return [
        MonthlyTrendPoint(name=name, month=name, amount=amount)
        for name, amount in zip(MONTH_NAMES, buckets)
    ]


def category_breakdown(expenses: Iterable[Expense]) -> list[CategoryInsight]:
    """
    Group amounts by category with each category's share of the total.

    Percentages are rounded independently, so they may not add up to 100.
    Categories appear in the order they are first seen.
    """
    totals: dict[str, Decimal] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, Decimal("0")) + expense.amount

    grand_total = sum(totals.values(), Decimal("0"))

    insights = []
    for category, amount in totals.items():
        if grand_total > 0:
            share = (amount / grand_total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            percentage = int(share)
        else:
            percentage = 0
        insights.append(CategoryInsight(category=category, amount=amount, percentage=percentage))
    return insights


def total_in_currency(expenses: Iterable[Expense], display_currency: str) -> Decimal:
    """Sum all amounts after converting each into ``display_currency``."""
    total = sum(
        (convert_between(e.amount, e.currency, display_currency) for e in expenses),
        Decimal("0"),
    )
    return total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def group_totals(expenses: Iterable[Expense]) -> dict[str, tuple[Decimal, set[str]]]:
    """
    Raw total and contributing currencies per group id.

    Expenses without a group are ignored. Totals are floored at zero.
    """
    result: dict[str, tuple[Decimal, set[str]]] = {}
    for expense in expenses:
        if not expense.group_id:
            continue
        amount, currencies = result.get(expense.group_id, (Decimal("0"), set()))
        currencies.add(expense.currency)
        result[expense.group_id] = (amount + expense.amount, currencies)
    return {
        group_id: (max(Decimal("0"), amount), currencies)
        for group_id, (amount, currencies) in result.items()
    }


def summarize(expenses: Iterable[Expense], display_currency: str) -> ExpenseSummary:
    """Compute every dashboard view in one pass over a materialized list."""
    expenses = list(expenses)
    return ExpenseSummary(
        monthly_trend=monthly_trend(expenses),
        category_breakdown=category_breakdown(expenses),
        total_amount=total_in_currency(expenses, display_currency),
        display_currency=display_currency,
        mixed_currency=len({e.currency for e in expenses}) > 1,
    )
