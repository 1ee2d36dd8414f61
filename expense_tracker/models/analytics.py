"""Chart and statistic models derived from the expense list."""

from decimal import Decimal

from pydantic import BaseModel, Field


class MonthlyTrendPoint(BaseModel):
    """One calendar-month bucket of the trend chart."""

    name: str = Field(..., description="Short month name, e.g. 'Mar'")
    month: str
    amount: Decimal = Decimal("0")


class CategoryInsight(BaseModel):
    """Share of spending for one category."""

    category: str
    amount: Decimal
    percentage: int = Field(..., ge=0, le=100)


class ExpenseSummary(BaseModel):
    """
    Everything the dashboard shows, computed in one pass.

    ``total_amount`` is normalized into ``display_currency``. The trend
    and the breakdown sum raw amounts; ``mixed_currency`` says whether
    that raw sum spans more than one currency.
    """

    monthly_trend: list[MonthlyTrendPoint] = Field(default_factory=list)
    category_breakdown: list[CategoryInsight] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    display_currency: str = "INR"
    mixed_currency: bool = False
