"""
Schedule Engine Module

Pure functions for loan terms and due dates: simple (non-compounding)
interest on the principal, equal monthly installments, and calendar-month
advancement clamped to the end of short months.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime
from dataclasses import dataclass
from typing import List, TypeVar
import calendar

from .exceptions import InvalidTermsError


CENTS = Decimal('0.01')
MAX_RATE = Decimal('100')

DateLike = TypeVar('DateLike', date, datetime)


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_amount(amount: Decimal) -> Decimal:
    """Round an amount to cents"""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LoanTerms:
    """Computed terms of a loan"""
    total_amount: Decimal
    monthly_amount: Decimal


@dataclass(frozen=True)
class Installment:
    """Single entry of an installment schedule"""
    number: int
    due_date: date
    amount: Decimal
    remaining: Decimal


def compute_terms(principal, rate_percent, duration_months: int) -> LoanTerms:
    """
    Compute total and monthly amounts for a loan
    
    Args:
        principal: Amount lent, must be >= 0
        rate_percent: Simple interest on the principal, 0-100
        duration_months: Number of monthly installments, must be >= 1
        
    Returns:
        LoanTerms with total = principal * (1 + rate / 100) and
        monthly = total / duration, both rounded to cents
    """
    try:
        principal = _to_decimal(principal)
        rate = _to_decimal(rate_percent)
    except ArithmeticError as e:
        raise InvalidTermsError(f"Loan amounts must be numeric: {e}") from e
    
    if not principal.is_finite() or principal < 0:
        raise InvalidTermsError(f"Principal must be non-negative, got {principal}")
    if not rate.is_finite() or rate < 0 or rate > MAX_RATE:
        raise InvalidTermsError(f"Interest rate must be between 0 and 100, got {rate}")
    if isinstance(duration_months, bool) or not isinstance(duration_months, int) or duration_months < 1:
        raise InvalidTermsError(f"Duration must be a whole number of months >= 1, got {duration_months}")
    
    total = quantize_amount(principal + principal * rate / Decimal('100'))
    monthly = quantize_amount(total / Decimal(duration_months))
    return LoanTerms(total_amount=total, monthly_amount=monthly)


def add_months(value: DateLike, months: int) -> DateLike:
    """Add calendar months, clamping the day to the last day of the target month"""
    month = value.month - 1 + months
    year = value.year + month // 12
    month = month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance_one_month(value: DateLike) -> DateLike:
    """
    Same day-of-month one calendar month later.
    
    Jan 31 becomes Feb 28 (Feb 29 in leap years) rather than rolling into
    March. Time of day and tzinfo of a datetime are preserved.
    """
    return add_months(value, 1)


def first_payment_date(start: DateLike) -> DateLike:
    """First due date of a new loan: one month after it starts"""
    return advance_one_month(start)


def due_dates(first_due: DateLike, duration_months: int) -> List[DateLike]:
    """All due dates of a loan, each measured from the first one"""
    return [add_months(first_due, offset) for offset in range(duration_months)]


def installment_schedule(terms: LoanTerms, first_due: date, duration_months: int) -> List[Installment]:
    """
    Equal monthly installments; the last one absorbs rounding so the
    schedule sums exactly to the total amount.
    """
    schedule = []
    remaining = terms.total_amount
    
    for number, due in enumerate(due_dates(first_due, duration_months), start=1):
        if number == duration_months:
            amount = remaining
        else:
            amount = min(terms.monthly_amount, remaining)
        remaining = remaining - amount
        schedule.append(Installment(
            number=number,
            due_date=due,
            amount=amount,
            remaining=remaining
        ))
    
    return schedule
