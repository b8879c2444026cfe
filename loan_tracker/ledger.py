"""
Payment Ledger Module

Owns every change to a loan's ledger fields. Operations validate first and
return an updated copy, so a failed call leaves the loan untouched.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import replace
from typing import Optional, Union

from .loans import LoanAccount, LoanStatus, PaymentMethod, PaymentRecord
from .schedule import advance_one_month
from .exceptions import InvalidPaymentError, InvalidCorrectionError, LoanNotDeletableError


ZERO = Decimal('0')


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _as_decimal(value, error_type, label: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except ArithmeticError as e:
        raise error_type(f"{label} must be numeric, got {value!r}") from e
    if not amount.is_finite():
        raise error_type(f"{label} must be finite, got {value!r}")
    return amount


def _balance_and_status(total_amount: Decimal, amount_paid: Decimal):
    balance = total_amount - amount_paid
    if balance <= ZERO:
        return ZERO, LoanStatus.COMPLETED
    return balance, LoanStatus.ACTIVE


def record_payment(
    loan: LoanAccount,
    amount,
    method: Union[PaymentMethod, str] = PaymentMethod.ONLINE,
    transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> LoanAccount:
    """
    Apply a payment and return the updated loan
    
    Every payment that does not complete the loan moves the next payment
    date forward by exactly one month, whatever its size. Partial periods
    are not prorated.
    
    Args:
        loan: Loan to pay into
        amount: Payment amount, must be > 0
        method: online or cash
        transaction_id: Optional external reference
        notes: Optional free text
        now: Payment instant (defaults to the current UTC time)
        
    Returns:
        Updated copy of the loan
    """
    amount = _as_decimal(amount, InvalidPaymentError, "Payment amount")
    if amount <= ZERO:
        raise InvalidPaymentError(f"Payment amount must be positive, got {amount}")
    if loan.is_completed:
        raise InvalidPaymentError(f"Loan {loan.id} is already completed")
    try:
        method = PaymentMethod(method)
    except ValueError as e:
        raise InvalidPaymentError(f"Unknown payment method: {method}") from e
    
    paid_at = _now(now)
    payment = PaymentRecord(
        amount=amount,
        date=paid_at,
        method=method,
        transaction_id=transaction_id,
        notes=notes
    )
    
    amount_paid = loan.amount_paid + amount
    balance, status = _balance_and_status(loan.total_amount, amount_paid)
    
    next_payment_date = loan.next_payment_date
    if status == LoanStatus.ACTIVE:
        next_payment_date = advance_one_month(next_payment_date)
    
    return replace(
        loan,
        amount_paid=amount_paid,
        balance_amount=balance,
        status=status,
        last_payment_date=paid_at,
        next_payment_date=next_payment_date,
        payment_history=[*loan.payment_history, payment],
        updated_at=paid_at
    )


def is_overdue(loan: LoanAccount, as_of: datetime) -> bool:
    """True when an active loan's next payment date has passed"""
    return loan.status == LoanStatus.ACTIVE and as_of > loan.next_payment_date


def effective_status(loan: LoanAccount, as_of: datetime) -> LoanStatus:
    """Persisted status, with overdue derived at read time"""
    if is_overdue(loan, as_of):
        return LoanStatus.OVERDUE
    return loan.status


def apply_manual_correction(
    loan: LoanAccount,
    new_amount_paid=None,
    new_last_payment_date: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> LoanAccount:
    """
    Administrative override of the amount paid and/or last payment date.
    
    No payment record is appended and the next payment date is not moved.
    Balance and status are recomputed the same way a payment does, so a
    correction below the total returns a completed loan to active.
    """
    changes = {"updated_at": _now(now)}
    
    if new_amount_paid is not None:
        amount_paid = _as_decimal(new_amount_paid, InvalidCorrectionError, "Amount paid")
        if amount_paid < ZERO or amount_paid > loan.total_amount:
            raise InvalidCorrectionError(
                f"Amount paid must be between 0 and {loan.total_amount}, got {amount_paid}"
            )
        balance, status = _balance_and_status(loan.total_amount, amount_paid)
        changes.update(amount_paid=amount_paid, balance_amount=balance, status=status)
    
    if new_last_payment_date is not None:
        changes["last_payment_date"] = new_last_payment_date
    
    return replace(loan, **changes)


def can_delete(loan: LoanAccount) -> bool:
    return loan.is_completed


def ensure_deletable(loan: LoanAccount) -> None:
    """Raise unless the loan may be removed from the store"""
    if not can_delete(loan):
        raise LoanNotDeletableError(
            f"Can only delete completed loans, loan {loan.id} is {loan.status.value}"
        )
