"""Outlier-resistant financial estimator (read side)."""

from .projection import (
    DataQuality,
    FinancialEstimate,
    MonthlyTotal,
    OutlierResult,
    QualityLevel,
    SavingsScenario,
    annotate_projection,
    assess_data_quality,
    estimate_from_ledger,
    estimate_monthly_expenses,
    monthly_expense_totals,
    recurring_baseline,
    remove_outliers,
)

__all__ = [
    "DataQuality",
    "FinancialEstimate",
    "MonthlyTotal",
    "OutlierResult",
    "QualityLevel",
    "SavingsScenario",
    "annotate_projection",
    "assess_data_quality",
    "estimate_from_ledger",
    "estimate_monthly_expenses",
    "monthly_expense_totals",
    "recurring_baseline",
    "remove_outliers",
]
