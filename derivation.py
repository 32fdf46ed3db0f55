"""
Derivation engine: every computed figure of a financial report.

All functions are pure. They read the stored (camelCase) shape of a report
and never touch the database, so recomputing over the same line items
always gives identical results.
"""
import math
from typing import Any, Mapping

from errors import ValidationError
from schemas import BalanceSheet, CamelModel, Tax

# Two sides of the balance sheet are considered equal within one currency unit.
BALANCE_TOLERANCE = 1


class ReportFigures(CamelModel):
    total_revenue: float = 0
    total_expenses: float = 0
    gross_profit: float = 0
    total_current_assets: float = 0
    total_fixed_assets: float = 0
    total_assets: float = 0
    total_current_liabilities: float = 0
    total_long_term_liabilities: float = 0
    total_liabilities: float = 0
    total_equity: float = 0
    tax_rate: float = 0
    deductions: float = 0
    taxable_income: float = 0
    tax_amount: float = 0
    net_profit: float = 0
    profit_margin: float = 0
    current_ratio: float = 0
    debt_to_equity_ratio: float = 0
    is_balanced: bool = False


def _number(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{where}' must be a number", details={"field": where, "value": repr(value)})
    if not math.isfinite(value):
        raise ValidationError(f"'{where}' must be finite", details={"field": where})
    return value


def _section(doc: Mapping[str, Any], *path: str) -> Mapping[str, Any]:
    node: Any = doc
    for depth, key in enumerate(path):
        where = ".".join(path[:depth + 1])
        if not isinstance(node, Mapping) or key not in node or node[key] is None:
            raise ValidationError(f"Missing category '{where}'", details={"field": where})
        node = node[key]
    if not isinstance(node, Mapping):
        raise ValidationError(f"Category '{'.'.join(path)}' must be a mapping", details={"field": ".".join(path)})
    return node


def sum_category(values: Mapping[str, Any], name: str = "category") -> float:
    """Sum every amount in one category mapping."""
    return math.fsum(_number(v, f"{name}.{k}") for k, v in values.items())


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator != 0 else 0


def is_balanced(total_assets: float, total_liabilities: float, total_equity: float) -> bool:
    return abs(total_assets - (total_liabilities + total_equity)) < BALANCE_TOLERANCE


def taxable_income(gross_profit: float, deductions: float) -> float:
    return max(0, gross_profit - deductions)


def derive(doc: Mapping[str, Any]) -> ReportFigures:
    """Compute all totals, tax and ratios from a report's line items.

    ``doc`` is a report in its stored shape; ``tax.rate`` must already be
    resolved to a number. Raises ValidationError on a missing category or a
    non-numeric amount.
    """
    total_revenue = sum_category(_section(doc, "revenue"), "revenue")
    total_expenses = sum_category(_section(doc, "expenses"), "expenses")
    gross_profit = total_revenue - total_expenses

    total_current_assets = sum_category(_section(doc, "assets", "current"), "assets.current")
    total_fixed_assets = sum_category(_section(doc, "assets", "fixed"), "assets.fixed")
    total_assets = total_current_assets + total_fixed_assets

    total_current_liabilities = sum_category(_section(doc, "liabilities", "current"), "liabilities.current")
    total_long_term_liabilities = sum_category(_section(doc, "liabilities", "longTerm"), "liabilities.longTerm")
    total_liabilities = total_current_liabilities + total_long_term_liabilities

    equity = _section(doc, "equity")
    total_equity = math.fsum(
        _number(equity.get(key), f"equity.{key}")
        for key in ("capital", "retainedEarnings", "currentEarnings")
    )

    tax = _section(doc, "tax")
    rate = _number(tax.get("rate"), "tax.rate")
    if not 0 <= rate <= 1:
        raise ValidationError("'tax.rate' must be between 0 and 1", details={"field": "tax.rate", "value": rate})
    deductions = _number(tax.get("deductions", 0), "tax.deductions")
    if deductions < 0:
        raise ValidationError("'tax.deductions' cannot be negative", details={"field": "tax.deductions"})

    taxable = taxable_income(gross_profit, deductions)
    tax_amount = taxable * rate
    net_profit = gross_profit - tax_amount

    return ReportFigures(
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        gross_profit=gross_profit,
        total_current_assets=total_current_assets,
        total_fixed_assets=total_fixed_assets,
        total_assets=total_assets,
        total_current_liabilities=total_current_liabilities,
        total_long_term_liabilities=total_long_term_liabilities,
        total_liabilities=total_liabilities,
        total_equity=total_equity,
        tax_rate=rate,
        deductions=deductions,
        taxable_income=taxable,
        tax_amount=tax_amount,
        net_profit=net_profit,
        profit_margin=_ratio(net_profit, total_revenue),
        current_ratio=_ratio(total_current_assets, total_current_liabilities),
        debt_to_equity_ratio=_ratio(total_liabilities, total_equity),
        is_balanced=is_balanced(total_assets, total_liabilities, total_equity),
    )


def apply_derived(doc: Mapping[str, Any]) -> dict:
    """Return a copy of ``doc`` with its ``tax`` and ``balanceSheet`` blocks recomputed."""
    figures = derive(doc)
    tax = Tax(
        income=figures.gross_profit,
        rate=figures.tax_rate,
        amount=figures.tax_amount,
        deductions=figures.deductions,
        net_taxable=figures.taxable_income,
    )
    balance_sheet = BalanceSheet(
        total_assets=figures.total_assets,
        total_liabilities=figures.total_liabilities,
        total_equity=figures.total_equity,
        is_balanced=figures.is_balanced,
    )
    out = dict(doc)
    out["tax"] = tax.model_dump(by_alias=True)
    out["balanceSheet"] = balance_sheet.model_dump(by_alias=True)
    return out
