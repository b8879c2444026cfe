"""
Test suite for loans module

Tests loan account serialization, payment records, and the repository
queries the scheduler and service depend on.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from loan_tracker import ledger
from loan_tracker.exceptions import NotFoundError, LoanNotDeletableError
from loan_tracker.loans import (
    LoanAccount, LoanRepository, LoanStatus, PaymentMethod, PaymentRecord
)
from loan_tracker.storage import InMemoryStorage


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_loan(loan_id="LOAN001", owner_id="OWNER001", borrower_id="BORROWER001",
              next_payment_date=None, created_at=NOW) -> LoanAccount:
    return LoanAccount(
        id=loan_id,
        created_at=created_at,
        updated_at=created_at,
        owner_id=owner_id,
        borrower_id=borrower_id,
        principal_amount=Decimal('10000'),
        interest_rate=Decimal('10'),
        duration_months=10,
        total_amount=Decimal('11000.00'),
        monthly_amount=Decimal('1100.00'),
        start_date=NOW,
        next_payment_date=next_payment_date or NOW + timedelta(days=31)
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def repository(storage):
    return LoanRepository(storage)


class TestLoanAccount:
    """Test the loan data model"""
    
    def test_new_loan_balance_defaults_to_total(self):
        loan = make_loan()
        
        assert loan.balance_amount == Decimal('11000.00')
        assert loan.amount_paid == Decimal('0')
        assert loan.status == LoanStatus.ACTIVE
        assert not loan.is_completed
        assert loan.overpaid_amount == Decimal('0')
        assert loan.is_active
    
    def test_nothing_owed_starts_completed(self):
        loan = LoanAccount(
            id="FREE", created_at=NOW, updated_at=NOW,
            owner_id="OWNER001", borrower_id="BORROWER001",
            principal_amount=Decimal('0'), interest_rate=Decimal('10'), duration_months=5,
            total_amount=Decimal('0.00'), monthly_amount=Decimal('0.00'),
            start_date=NOW, next_payment_date=NOW + timedelta(days=31)
        )
        
        assert loan.balance_amount == Decimal('0')
        assert loan.status == LoanStatus.COMPLETED
        assert ledger.can_delete(loan)
    
    def test_serialization_preserves_ledger(self):
        loan = ledger.record_payment(make_loan(), Decimal('1100.50'), "cash",
                                     transaction_id="T1", notes="first", now=NOW)
        data = loan.to_dict()
        
        assert data["amount_paid"] == "1100.50"
        assert data["status"] == "active"
        assert data["payment_history"][0]["method"] == "cash"
        
        restored = LoanAccount.from_dict(data)
        assert restored == loan
    
    def test_naive_timestamps_read_as_utc(self):
        data = make_loan().to_dict()
        data["next_payment_date"] = "2024-04-01T09:00:00"
        
        restored = LoanAccount.from_dict(data)
        assert restored.next_payment_date == datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


class TestPaymentRecord:
    """Test payment history entries"""
    
    def test_payment_record_is_immutable(self):
        payment = PaymentRecord(amount=Decimal('10'), date=NOW)
        
        with pytest.raises(AttributeError):
            payment.amount = Decimal('20')
    
    def test_method_defaults_to_online(self):
        restored = PaymentRecord.from_dict({"amount": "10", "date": NOW.isoformat()})
        
        assert restored.method == PaymentMethod.ONLINE
        assert restored.transaction_id is None


class TestLoanRepository:
    """Test document store mapping"""
    
    def test_save_and_get(self, repository):
        loan = make_loan()
        repository.save(loan)
        
        assert repository.get("LOAN001") == loan
        assert repository.get("missing") is None
    
    def test_require_unknown_loan(self, repository):
        with pytest.raises(NotFoundError):
            repository.require("missing")
    
    def test_loans_by_party_newest_first(self, repository):
        repository.save(make_loan("L1", created_at=NOW))
        repository.save(make_loan("L2", created_at=NOW + timedelta(hours=1)))
        repository.save(make_loan("L3", owner_id="OWNER002", borrower_id="BORROWER002"))
        
        assert [l.id for l in repository.find_for_owner("OWNER001")] == ["L2", "L1"]
        assert [l.id for l in repository.find_for_borrower("BORROWER002")] == ["L3"]
    
    def test_active_due_between_is_inclusive(self, repository):
        start = NOW
        end = NOW + timedelta(days=7)
        repository.save(make_loan("AT_START", next_payment_date=start))
        repository.save(make_loan("AT_END", next_payment_date=end))
        repository.save(make_loan("BEFORE", next_payment_date=start - timedelta(seconds=1)))
        repository.save(make_loan("AFTER", next_payment_date=end + timedelta(seconds=1)))
        
        completed = ledger.record_payment(make_loan("DONE", next_payment_date=start), 11000, now=NOW)
        repository.save(completed)
        
        due = repository.find_active_due_between(start, end)
        assert [l.id for l in due] == ["AT_START", "AT_END"]
    
    def test_delete_if_completed(self, repository):
        repository.save(make_loan())
        
        with pytest.raises(LoanNotDeletableError):
            repository.delete_if_completed("LOAN001")
        assert repository.get("LOAN001") is not None
        
        repository.save(ledger.record_payment(repository.require("LOAN001"), 11000, now=NOW))
        repository.delete_if_completed("LOAN001")
        assert repository.get("LOAN001") is None
