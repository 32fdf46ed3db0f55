"""
Dashboard aggregation over approved reports.

Holds no business rules of its own beyond the period-over-period growth
comparison: every figure comes from the derivation engine.
"""
from typing import Iterable, List

from pydantic import Field

from derivation import derive
from lifecycle import period_sort_key
from schemas import CamelModel


class TrendPoint(CamelModel):
    period: str
    total_revenue: float
    total_expenses: float
    net_profit: float


class DashboardStats(CamelModel):
    total_revenue: float = 0
    total_expenses: float = 0
    net_profit: float = 0
    total_assets: float = 0
    total_liabilities: float = 0
    total_equity: float = 0
    tax_amount: float = 0
    revenue_growth: float = 0
    profit_margin: float = 0
    current_ratio: float = 0
    debt_to_equity_ratio: float = 0
    report_count: int = 0
    latest_period: str = ""
    trend: List[TrendPoint] = Field(default_factory=list)


def growth_rate(latest: float, previous: float) -> float:
    """Percentage change; 0 when there is nothing to compare against."""
    if not previous:
        return 0
    return (latest - previous) / previous * 100


def compute_dashboard_stats(reports: Iterable[dict]) -> DashboardStats:
    """Reduce reports (stored shape) into the dashboard snapshot.

    Reports are ordered chronologically here, so callers may pass them in
    any order.
    """
    ordered = sorted(reports, key=period_sort_key)
    if not ordered:
        return DashboardStats()

    figures = [derive(doc) for doc in ordered]
    latest = figures[-1]
    # Growth compares like with like: the previous report of the latest one's type.
    latest_type = ordered[-1]["reportType"]
    same_type = [fig for doc, fig in zip(ordered[:-1], figures[:-1]) if doc["reportType"] == latest_type]
    previous_revenue = same_type[-1].total_revenue if same_type else 0

    return DashboardStats(
        total_revenue=latest.total_revenue,
        total_expenses=latest.total_expenses,
        net_profit=latest.net_profit,
        total_assets=latest.total_assets,
        total_liabilities=latest.total_liabilities,
        total_equity=latest.total_equity,
        tax_amount=latest.tax_amount,
        revenue_growth=growth_rate(latest.total_revenue, previous_revenue),
        profit_margin=latest.profit_margin,
        current_ratio=latest.current_ratio,
        debt_to_equity_ratio=latest.debt_to_equity_ratio,
        report_count=len(ordered),
        latest_period=ordered[-1].get("period", ""),
        trend=[
            TrendPoint(
                period=doc.get("period", ""),
                total_revenue=fig.total_revenue,
                total_expenses=fig.total_expenses,
                net_profit=fig.net_profit,
            )
            for doc, fig in zip(ordered, figures)
        ],
    )
