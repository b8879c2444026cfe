"""
Loan Module

Loan accounts between an owner (lender) and a borrower: fixed terms,
mutable ledger state and the append-only payment history, plus the
repository that maps them onto the document store.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum

from .storage import StorageInterface, StorageRecord
from .exceptions import NotFoundError, LoanNotDeletableError


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"      # Derived at read time, never persisted


class PaymentMethod(Enum):
    """How a payment was made"""
    ONLINE = "online"
    CASH = "cash"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class PaymentRecord:
    """Single entry of a loan's payment history"""
    amount: Decimal
    date: datetime
    method: PaymentMethod = PaymentMethod.ONLINE
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "method": self.method.value,
            "transaction_id": self.transaction_id,
            "notes": self.notes
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentRecord':
        return cls(
            amount=Decimal(data["amount"]),
            date=_parse_datetime(data["date"]),
            method=PaymentMethod(data.get("method", PaymentMethod.ONLINE.value)),
            transaction_id=data.get("transaction_id"),
            notes=data.get("notes")
        )


@dataclass
class LoanAccount(StorageRecord):
    """Loan between an owner and a borrower"""
    owner_id: str
    borrower_id: str
    
    # Terms, fixed at creation
    principal_amount: Decimal
    interest_rate: Decimal              # Percentage of principal, simple
    duration_months: int
    total_amount: Decimal
    monthly_amount: Decimal
    
    # Ledger state
    start_date: datetime
    next_payment_date: datetime
    amount_paid: Decimal = Decimal('0')
    balance_amount: Optional[Decimal] = None
    status: LoanStatus = LoanStatus.ACTIVE
    last_payment_date: Optional[datetime] = None
    payment_history: List[PaymentRecord] = field(default_factory=list)
    
    def __post_init__(self):
        if self.balance_amount is None:
            self.balance_amount = max(Decimal('0'), self.total_amount - self.amount_paid)
            # A loan with nothing left to pay is completed from the start
            if self.balance_amount == Decimal('0'):
                self.status = LoanStatus.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE
    
    @property
    def is_completed(self) -> bool:
        return self.status == LoanStatus.COMPLETED
    
    @property
    def overpaid_amount(self) -> Decimal:
        """Amount paid beyond the total, from an overpaying final payment"""
        return max(Decimal('0'), self.amount_paid - self.total_amount)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "owner_id": self.owner_id,
            "borrower_id": self.borrower_id,
            "principal_amount": str(self.principal_amount),
            "interest_rate": str(self.interest_rate),
            "duration_months": self.duration_months,
            "total_amount": str(self.total_amount),
            "monthly_amount": str(self.monthly_amount),
            "start_date": self.start_date.isoformat(),
            "next_payment_date": self.next_payment_date.isoformat(),
            "amount_paid": str(self.amount_paid),
            "balance_amount": str(self.balance_amount),
            "status": self.status.value,
            "last_payment_date": self.last_payment_date.isoformat() if self.last_payment_date else None,
            "payment_history": [payment.to_dict() for payment in self.payment_history]
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanAccount':
        return cls(
            id=data["id"],
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
            owner_id=data["owner_id"],
            borrower_id=data["borrower_id"],
            principal_amount=Decimal(data["principal_amount"]),
            interest_rate=Decimal(data["interest_rate"]),
            duration_months=int(data["duration_months"]),
            total_amount=Decimal(data["total_amount"]),
            monthly_amount=Decimal(data["monthly_amount"]),
            start_date=_parse_datetime(data["start_date"]),
            next_payment_date=_parse_datetime(data["next_payment_date"]),
            amount_paid=Decimal(data["amount_paid"]),
            balance_amount=Decimal(data["balance_amount"]),
            status=LoanStatus(data["status"]),
            last_payment_date=_parse_datetime(data.get("last_payment_date")),
            payment_history=[PaymentRecord.from_dict(p) for p in data.get("payment_history", [])]
        )


class LoanRepository:
    """
    Maps loan accounts onto the document store.
    
    Only the queries the core needs are offered: lookup by id, loans of a
    party, and active loans due within a range.
    """
    
    def __init__(self, storage: StorageInterface, table: str = "loans"):
        self.storage = storage
        self.table = table
    
    def get(self, loan_id: str) -> Optional[LoanAccount]:
        data = self.storage.load(self.table, loan_id)
        if data:
            return LoanAccount.from_dict(data)
        return None
    
    def require(self, loan_id: str) -> LoanAccount:
        loan = self.get(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan
    
    def save(self, loan: LoanAccount) -> None:
        self.storage.save(self.table, loan.id, loan.to_dict())
    
    def delete_if_completed(self, loan_id: str) -> None:
        """Remove a loan, refusing unless it is completed"""
        loan = self.require(loan_id)
        if not loan.is_completed:
            raise LoanNotDeletableError(f"Can only delete completed loans, loan {loan_id} is {loan.status.value}")
        self.storage.delete(self.table, loan_id)
    
    def find_for_owner(self, owner_id: str) -> List[LoanAccount]:
        return self._newest_first(self.storage.find(self.table, {"owner_id": owner_id}))
    
    def find_for_borrower(self, borrower_id: str) -> List[LoanAccount]:
        return self._newest_first(self.storage.find(self.table, {"borrower_id": borrower_id}))
    
    def find_active(self) -> List[LoanAccount]:
        data = self.storage.find(self.table, {"status": LoanStatus.ACTIVE.value})
        return [LoanAccount.from_dict(item) for item in data]
    
    def find_active_due_between(self, start: datetime, end: datetime) -> List[LoanAccount]:
        """Active loans whose next payment date lies in [start, end]"""
        due = [loan for loan in self.find_active() if start <= loan.next_payment_date <= end]
        due.sort(key=lambda loan: loan.next_payment_date)
        return due
    
    @staticmethod
    def _newest_first(data: List[Dict[str, Any]]) -> List[LoanAccount]:
        loans = [LoanAccount.from_dict(item) for item in data]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans
