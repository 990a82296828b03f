"""
Aggregate Calculator

Pure functions over a list of transactions. Callers filter to the scope
they need (a month, all time) and convert every amount to one reference
currency first; nothing here converts or reads state.

Months are 1-12 throughout.
"""

import calendar
import csv
import io
from datetime import date
from decimal import Decimal
from typing import Iterable

from fintrack.models.ledger import (
    CategoryExpense,
    FilterCriteria,
    FinancialSummary,
    Transaction,
    TransactionType,
)
from fintrack.services.currency import ConversionPort


ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def _total(transactions: Iterable[Transaction], tx_type: TransactionType) -> Decimal:
    return sum((t.amount for t in transactions if t.type == tx_type), ZERO)


def total_income(transactions: Iterable[Transaction]) -> Decimal:
    return _total(transactions, TransactionType.INCOME)


def total_expense(transactions: Iterable[Transaction]) -> Decimal:
    return _total(transactions, TransactionType.EXPENSE)


def total_savings(transactions: Iterable[Transaction]) -> Decimal:
    """Savings transactions only (withdrawals not netted)."""
    return _total(transactions, TransactionType.SAVINGS)


def total_withdrawals(transactions: Iterable[Transaction]) -> Decimal:
    return _total(transactions, TransactionType.WITHDRAWAL)


def net_savings(transactions: Iterable[Transaction]) -> Decimal:
    transactions = list(transactions)
    return total_savings(transactions) - total_withdrawals(transactions)


def cash_balance(transactions: Iterable[Transaction]) -> Decimal:
    """
    income - expense - savings + withdrawals

    Saving money takes it out of cash; withdrawing puts it back.
    """
    transactions = list(transactions)
    return (
        total_income(transactions)
        - total_expense(transactions)
        - total_savings(transactions)
        + total_withdrawals(transactions)
    )


def month_end(month: int, year: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def cumulative_savings(transactions: Iterable[Transaction], month: int, year: int) -> Decimal:
    """Net savings over the full history up to the end of the given month."""
    boundary = month_end(month, year)
    return net_savings(t for t in transactions if t.date <= boundary)


def net_worth(transactions: Iterable[Transaction], month: int, year: int) -> Decimal:
    """
    Running wealth as of the given month.

    Savings-based: the cumulative net savings, not income minus expense.
    Pass the full history, not the displayed month's slice.
    """
    return cumulative_savings(transactions, month, year)


def savings_rate(transactions: Iterable[Transaction]) -> Decimal:
    """(income - expense) / income * 100, or 0 when there is no income."""
    transactions = list(transactions)
    income = total_income(transactions)
    if income == 0:
        return ZERO
    return (income - total_expense(transactions)) / income * HUNDRED


def financial_summary(
    month_transactions: Iterable[Transaction],
    all_transactions: Iterable[Transaction],
    month: int,
    year: int,
) -> FinancialSummary:
    """Dashboard figures: month totals plus the cumulative net worth."""
    month_transactions = list(month_transactions)
    return FinancialSummary(
        month=month,
        year=year,
        total_income=total_income(month_transactions),
        total_expense=total_expense(month_transactions),
        total_savings=net_savings(month_transactions),
        cash_balance=cash_balance(month_transactions),
        net_worth=net_worth(all_transactions, month, year),
        savings_rate=savings_rate(month_transactions),
    )


# =============================================================================
# GROUPING AND FILTERING
# =============================================================================

def group_by_category(transactions: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    groups: dict[str, list[Transaction]] = {}
    for t in transactions:
        groups.setdefault(t.category, []).append(t)
    return groups


def expenses_by_category(transactions: Iterable[Transaction]) -> list[CategoryExpense]:
    """Expense totals per category, largest first, with share of the total."""
    expenses = [t for t in transactions if t.type == TransactionType.EXPENSE]
    total = total_expense(expenses)
    if total == 0:
        return []

    breakdown = []
    for category, items in group_by_category(expenses).items():
        amount = sum((t.amount for t in items), ZERO)
        breakdown.append(CategoryExpense(
            category=category,
            amount=amount,
            percentage=amount / total * HUNDRED,
            count=len(items),
        ))
    breakdown.sort(key=lambda c: c.amount, reverse=True)
    return breakdown


def filter_by_date_range(
    transactions: Iterable[Transaction],
    start_date: date,
    end_date: date,
) -> list[Transaction]:
    """Inclusive on both ends."""
    return [t for t in transactions if start_date <= t.date <= end_date]


def filter_by_month(transactions: Iterable[Transaction], month: int, year: int) -> list[Transaction]:
    return [t for t in transactions if t.date.month == month and t.date.year == year]


def filter_by_criteria(
    transactions: Iterable[Transaction],
    criteria: FilterCriteria,
) -> list[Transaction]:
    result = []
    for t in transactions:
        if criteria.start_date and t.date < criteria.start_date:
            continue
        if criteria.end_date and t.date > criteria.end_date:
            continue
        if criteria.category and t.category != criteria.category:
            continue
        if criteria.type and t.type != criteria.type:
            continue
        result.append(t)
    return result


# =============================================================================
# INFLATION
# =============================================================================

def real_wealth(nominal: Decimal, inflation_rate: float, years: float = 1) -> Decimal:
    """
    Inflation-adjusted value.

    real = nominal / (1 + rate/100) ** years
    """
    factor = (1 + Decimal(str(inflation_rate)) / HUNDRED) ** Decimal(str(years))
    return nominal / factor


def real_wealth_by_month(
    transactions: Iterable[Transaction],
    month: int,
    year: int,
    inflation_rate: float,
    current_month: int,
    current_year: int,
) -> Decimal:
    """Net worth at a past month, expressed in today's money."""
    nominal = net_worth(transactions, month, year)
    years_passed = (current_year - year) + Decimal(current_month - month) / 12
    if years_passed <= 0:
        return nominal
    return real_wealth(nominal, inflation_rate, float(years_passed))


# =============================================================================
# CONVERSION AND EXPORT
# =============================================================================

def to_reference_currency(
    transactions: Iterable[Transaction],
    converter: ConversionPort,
    currency: str,
) -> list[Transaction]:
    """
    Copies of the transactions with amounts in one currency.

    The caller's records are left untouched.
    """
    converted = []
    for t in transactions:
        if t.original_currency == currency:
            converted.append(t)
            continue
        converted.append(
            t.model_copy(update={
                "amount": converter.convert(t.amount, t.original_currency, currency),
                "original_currency": currency,
            })
        )
    return converted


CSV_HEADERS = {
    "tr": ["Başlık", "Tutar", "Kategori", "Tarih", "Tür", "Açıklama"],
    "en": ["Title", "Amount", "Category", "Date", "Type", "Description"],
}

CATEGORY_CSV_HEADERS = {
    "tr": ["Kategori", "Tutar", "Yüzde", "İşlem Sayısı", "Para Birimi"],
    "en": ["Category", "Amount", "Percentage", "Transaction Count", "Currency"],
}

MONTHLY_CSV_HEADERS = {
    "tr": ["Ay", "Gelir", "Gider", "Tasarruf", "Net", "Para Birimi"],
    "en": ["Month", "Income", "Expense", "Savings", "Net", "Currency"],
}


def _write_csv(headers: list[str], rows: Iterable[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def transactions_to_csv(transactions: Iterable[Transaction], language: str = "tr") -> str:
    """Export as CSV with headers in the user's language."""
    headers = CSV_HEADERS.get(language, CSV_HEADERS["en"])
    return _write_csv(headers, (
        [
            t.title,
            f"{t.amount:f}",
            t.category,
            t.date.isoformat(),
            t.type.value,
            t.description or "",
        ]
        for t in transactions
    ))


def category_breakdown_to_csv(
    breakdown: Iterable[CategoryExpense],
    currency: str,
    language: str = "tr",
) -> str:
    """Output of expenses_by_category as CSV; percentages to two places."""
    headers = CATEGORY_CSV_HEADERS.get(language, CATEGORY_CSV_HEADERS["en"])
    return _write_csv(headers, (
        [
            c.category,
            f"{c.amount.quantize(CENT):f}",
            f"{c.percentage.quantize(CENT):f}%",
            c.count,
            currency,
        ]
        for c in breakdown
    ))


def monthly_breakdown_to_csv(
    summaries: Iterable[FinancialSummary],
    currency: str,
    language: str = "tr",
) -> str:
    """
    One row per month summary.

    Savings is the month's net savings and Net the month's cash flow
    (income - expense - savings + withdrawals).
    """
    headers = MONTHLY_CSV_HEADERS.get(language, MONTHLY_CSV_HEADERS["en"])
    return _write_csv(headers, (
        [
            f"{s.year:04d}-{s.month:02d}",
            f"{s.total_income.quantize(CENT):f}",
            f"{s.total_expense.quantize(CENT):f}",
            f"{s.total_savings.quantize(CENT):f}",
            f"{s.cash_balance.quantize(CENT):f}",
            currency,
        ]
        for s in summaries
    ))
