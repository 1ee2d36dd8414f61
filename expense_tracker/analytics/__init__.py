"""Derived views over the expense list."""

from expense_tracker.analytics.aggregations import (
    MONTH_NAMES,
    category_breakdown,
    group_totals,
    monthly_trend,
    summarize,
    total_in_currency,
)

__all__ = [
    "MONTH_NAMES",
    "category_breakdown",
    "group_totals",
    "monthly_trend",
    "summarize",
    "total_in_currency",
]
