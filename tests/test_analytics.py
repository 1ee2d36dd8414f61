"""
Tests for the expense aggregations.
"""

from datetime import date
from decimal import Decimal

from expense_tracker.analytics import (
    MONTH_NAMES,
    category_breakdown,
    group_totals,
    monthly_trend,
    summarize,
    total_in_currency,
)
from expense_tracker.models import Expense


def _expense(amount, category="Food", when=date(2024, 3, 1), currency="USD", group_id=None):
    return Expense(
        title="Item",
        amount=Decimal(str(amount)),
        date=when,
        category=category,
        currency=currency,
        group_id=group_id,
    )


class TestMonthlyTrend:
    """Tests for the month-of-year buckets."""

    def test_twelve_ordered_buckets(self):
        """Test that every month is present, in order, even when empty."""
        trend = monthly_trend([])
        assert [p.month for p in trend] == list(MONTH_NAMES)
        assert all(p.amount == 0 for p in trend)

    def test_same_month_different_years_share_a_bucket(self):
        """Test the non-year-aware bucketing."""
        trend = monthly_trend([
            _expense(10, when=date(2023, 3, 5)),
            _expense(15, when=date(2024, 3, 20)),
            _expense(7, when=date(2024, 12, 31)),
        ])

        amounts = {p.month: p.amount for p in trend}
        assert amounts["Mar"] == Decimal("25")
        assert amounts["Dec"] == Decimal("7")
        assert amounts["Jan"] == Decimal("0")


class TestCategoryBreakdown:
    """Tests for category shares."""

    def test_quarter_and_three_quarters(self):
        """Test Food 100 / Rent 300."""
        breakdown = category_breakdown([_expense(100, "Food"), _expense(300, "Rent")])

        assert [(c.category, c.amount, c.percentage) for c in breakdown] == [
            ("Food", Decimal("100"), 25),
            ("Rent", Decimal("300"), 75),
        ]

    def test_independent_rounding_may_not_sum_to_100(self):
        """Test that three equal thirds each round to 33."""
        breakdown = category_breakdown([_expense(1, "A"), _expense(1, "B"), _expense(1, "C")])

        assert [c.percentage for c in breakdown] == [33, 33, 33]

    def test_empty_list(self):
        """Test no categories at all."""
        assert category_breakdown([]) == []


class TestTotals:
    """Tests for total and per-group sums."""

    def test_total_converts_each_expense(self):
        """Test normalizing into the display currency."""
        total = total_in_currency(
            [_expense("83.51", currency="INR"), _expense(2, currency="USD")],
            "USD",
        )
        assert total == Decimal("3.00")

    def test_group_totals_keep_raw_amounts_and_currencies(self):
        """Test the unconverted per-group sum and its currency tag."""
        totals = group_totals([
            _expense(10, group_id="g1", currency="USD"),
            _expense(5, group_id="g1", currency="EUR"),
            _expense(3, group_id="g2"),
            _expense(100),
        ])

        assert totals["g1"] == (Decimal("15"), {"USD", "EUR"})
        assert totals["g2"] == (Decimal("3"), {"USD"})
        assert set(totals) == {"g1", "g2"}

    def test_summary_flags_mixed_currency(self):
        """Test the summary over two currencies."""
        summary = summarize([_expense(1, currency="USD"), _expense(1, currency="EUR")], "USD")

        assert summary.mixed_currency
        assert summary.display_currency == "USD"
        assert len(summary.monthly_trend) == 12

    def test_summary_single_currency(self):
        """Test the summary over one currency."""
        summary = summarize([_expense(4)], "USD")

        assert not summary.mixed_currency
        assert summary.total_amount == Decimal("4.00")
