"""
Outlier-resistant monthly expense estimation.

Read-side consumer of committed ledger history. Produces a stable "typical
monthly expense" for savings projections:

1. Expense totals for the six calendar months ending at the reference month
   (most recent first; months without expense entries are missing data).
2. With >= 3 months of data, IQR outlier removal:
   Q1 = sorted[floor(0.25 n)], Q3 = sorted[floor(0.75 n)], IQR = Q3 - Q1,
   valid range [Q1 - 1.5 IQR, Q3 + 1.5 IQR].
3. Average of the most recent (up to) three remaining months.
4. Typical expense = max(average, recurring baseline), an upper estimate.
5. Savings potential = income - typical expense (may be negative).

All functions are pure.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from dateutil.relativedelta import relativedelta

from ..classification.subscriptions import normalize_description
from ..schemas.ledger import LedgerEntry, TransactionType

CENTS = Decimal("0.01")
IQR_FACTOR = Decimal("1.5")

# Number of trailing calendar months considered
HISTORY_MONTHS = 6
# Number of most recent clean months averaged
RECENT_MONTHS = 3
# Minimum months before outlier removal is meaningful
MIN_MONTHS_FOR_IQR = 3

SCENARIO_RATES: list[tuple[str, Decimal]] = [
    ("conservative", Decimal("0.30")),
    ("realistic", Decimal("0.50")),
    ("optimistic", Decimal("0.90")),
]


class QualityLevel(str, Enum):
    GOOD = "good"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class MonthlyTotal:
    month: date  # First day of the month
    total: Decimal


@dataclass(frozen=True)
class OutlierResult:
    cleaned: list[Decimal]
    outliers: list[Decimal]
    applied: bool


@dataclass(frozen=True)
class SavingsScenario:
    name: str
    rate: Decimal
    monthly_amount: Decimal


@dataclass(frozen=True)
class DataQuality:
    """0-100 confidence in an estimate, with one caveat per weak dimension."""

    score: float
    level: QualityLevel
    caveats: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FinancialEstimate:
    income: Decimal
    monthly_totals: list[Decimal]  # Most recent first
    cleaned_totals: list[Decimal]
    outliers: list[Decimal]
    average_expense: Decimal
    recurring_baseline: Decimal
    typical_expense: Decimal
    savings_potential: Decimal
    scenarios: list[SavingsScenario]
    quality: DataQuality

    @property
    def uses_recurring_baseline(self) -> bool:
        return self.recurring_baseline > self.average_expense


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _average(values: list[Decimal]) -> Decimal:
    if not values:
        return Decimal("0")
    return _cents(sum(values, Decimal("0")) / len(values))


def remove_outliers(values: list[Decimal]) -> OutlierResult:
    """
    IQR outlier removal, preserving the input order.

    Fewer than three values are returned unchanged.
    """
    if len(values) < MIN_MONTHS_FOR_IQR:
        return OutlierResult(cleaned=list(values), outliers=[], applied=False)

    ordered = sorted(values)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    lower = q1 - IQR_FACTOR * iqr
    upper = q3 + IQR_FACTOR * iqr

    cleaned = [v for v in values if lower <= v <= upper]
    outliers = [v for v in values if not lower <= v <= upper]
    return OutlierResult(cleaned=cleaned, outliers=outliers, applied=True)


def assess_data_quality(
    transaction_count: int,
    clean_months: int,
    income: Decimal,
) -> DataQuality:
    """Score volume, clean months and income configuration; mean of the three."""
    caveats: list[str] = []
    total = 0

    if transaction_count < 10:
        caveats.append("Add more transactions for accurate analysis (30 or more recommended).")
        total += 20
    elif transaction_count < 30:
        caveats.append("Add more transactions to improve accuracy.")
        total += 50
    else:
        total += 100

    if clean_months < 2:
        caveats.append("Record expenses for at least 2-3 months for reliable analysis.")
        total += 20
    elif clean_months < 3:
        caveats.append("Keep recording transactions to improve accuracy.")
        total += 60
    else:
        total += 100

    if income <= 0:
        caveats.append("Configure your monthly income.")
    else:
        total += 100

    score = total / 3
    if score >= 80:
        level = QualityLevel.GOOD
    elif score >= 50:
        level = QualityLevel.MEDIUM
    else:
        level = QualityLevel.LOW

    return DataQuality(score=round(score, 1), level=level, caveats=caveats)


def estimate_monthly_expenses(
    monthly_totals: list[Decimal],
    recurring_baseline: Decimal,
    income: Decimal,
    transaction_count: int,
) -> FinancialEstimate:
    """
    Estimate typical monthly expense and savings potential.

    Args:
        monthly_totals: Expense totals of months with data, most recent first
        recurring_baseline: Sum of recurring expense amounts
        income: Monthly income (0 when not configured)
        transaction_count: Ledger size, used for the quality score
    """
    result = remove_outliers(monthly_totals)

    recent = result.cleaned[:RECENT_MONTHS]
    if recent:
        average = _average(recent)
    else:
        average = _average(monthly_totals[:RECENT_MONTHS])

    typical = max(average, _cents(recurring_baseline))
    savings = _cents(income - typical)

    scenarios = [
        SavingsScenario(name=name, rate=rate, monthly_amount=_cents(savings * rate))
        for name, rate in SCENARIO_RATES
    ]

    return FinancialEstimate(
        income=income,
        monthly_totals=list(monthly_totals),
        cleaned_totals=result.cleaned,
        outliers=result.outliers,
        average_expense=average,
        recurring_baseline=_cents(recurring_baseline),
        typical_expense=typical,
        savings_potential=savings,
        scenarios=scenarios,
        quality=assess_data_quality(transaction_count, len(recent), income),
    )


def monthly_expense_totals(
    entries: Iterable[LedgerEntry],
    as_of: date,
    months: int = HISTORY_MONTHS,
) -> list[MonthlyTotal]:
    """
    Expense totals per calendar month, most recent first.

    Entries are bucketed by payment date (purchase date as fallback). Only
    months that contain at least one expense entry are returned.
    """
    anchor = as_of.replace(day=1)
    window = [anchor - relativedelta(months=offset) for offset in range(months)]
    totals: dict[date, Decimal] = {}

    for entry in entries:
        if entry.type != TransactionType.EXPENSE:
            continue
        month = entry.effective_date.replace(day=1)
        if month in window:
            totals[month] = totals.get(month, Decimal("0")) + entry.amount

    return [MonthlyTotal(month=m, total=totals[m]) for m in window if m in totals]


def recurring_baseline(entries: Iterable[LedgerEntry]) -> Decimal:
    """
    Sum of recurring expenses, one amount per distinct subscription.

    For each normalized recurring description the most recent entry counts.
    """
    latest: dict[str, LedgerEntry] = {}
    for entry in entries:
        if entry.type != TransactionType.EXPENSE or not entry.is_recurring:
            continue
        key = normalize_description(entry.description)
        current = latest.get(key)
        if current is None or (entry.effective_date, entry.created_at) > (
            current.effective_date,
            current.created_at,
        ):
            latest[key] = entry

    return sum((entry.amount for entry in latest.values()), Decimal("0"))


def estimate_from_ledger(
    entries: list[LedgerEntry],
    income: Decimal,
    as_of: Optional[date] = None,
) -> FinancialEstimate:
    """Build the estimator inputs from committed entries and run the estimate."""
    as_of = as_of or date.today()
    totals = monthly_expense_totals(entries, as_of)
    return estimate_monthly_expenses(
        monthly_totals=[t.total for t in totals],
        recurring_baseline=recurring_baseline(entries),
        income=income,
        transaction_count=len(entries),
    )


def annotate_projection(text: str, quality: DataQuality) -> str:
    """Prefix a projection with a confidence caveat when data is thin."""
    if quality.level == QualityLevel.GOOD:
        return text
    adjective = "insufficient" if quality.level == QualityLevel.LOW else "limited"
    return f"⚠️ Analysis based on {adjective} data. {text}"
