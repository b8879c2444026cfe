"""
Loan Service Module

Entry point for callers that already know who the actor is: creates loans,
serves reads, and routes payments, corrections and deletions through the
ledger. Mutations of one loan are serialized; different loans proceed in
parallel.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import threading
import uuid

from . import ledger
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidTermsError
from .loans import LoanAccount, LoanRepository, LoanStatus, PaymentMethod
from .logging_config import get_logger, log_action
from .parties import PartyDirectory, PartyRole
from .rbac import Actor, require_owner_role, require_party, require_loan_owner
from .schedule import compute_terms, first_payment_date


logger = get_logger("loan_tracker.service")


class LoanService:
    """
    Manages loans from creation through payoff and deletion
    """
    
    def __init__(
        self,
        repository: LoanRepository,
        parties: PartyDirectory,
        audit_trail: AuditTrail,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.repository = repository
        self.storage = repository.storage
        self.parties = parties
        self.audit_trail = audit_trail
        self.clock = clock
        
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
    
    def _lock_for(self, loan_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(loan_id, threading.Lock())
    
    def create_loan(
        self,
        actor: Actor,
        borrower_id: str,
        principal_amount,
        interest_rate,
        duration_months: int,
        start_date: Optional[datetime] = None
    ) -> LoanAccount:
        """
        Create a loan from an owner to a borrower
        
        Args:
            actor: Owner creating the loan
            borrower_id: Registered borrower receiving it
            principal_amount: Amount lent
            interest_rate: Simple interest, percent of principal
            duration_months: Number of monthly installments
            start_date: Loan start (defaults to now); first payment is due a month later
            
        Returns:
            Created LoanAccount
        """
        require_owner_role(actor, "create loans")
        
        borrower = self.parties.require(borrower_id)
        if borrower.role != PartyRole.BORROWER:
            raise InvalidTermsError(f"Party {borrower_id} is not a borrower")
        
        terms = compute_terms(principal_amount, interest_rate, duration_months)
        now = self.clock()
        start = start_date or now
        
        loan = LoanAccount(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=actor.user_id,
            borrower_id=borrower_id,
            principal_amount=Decimal(str(principal_amount)),
            interest_rate=Decimal(str(interest_rate)),
            duration_months=duration_months,
            total_amount=terms.total_amount,
            monthly_amount=terms.monthly_amount,
            start_date=start,
            next_payment_date=first_payment_date(start)
        )
        with self.storage.atomic():
            self.repository.save(loan)
            self.audit_trail.log_event(
                AuditEventType.LOAN_CREATED, "loan", loan.id,
                {
                    "borrower_id": borrower_id,
                    "principal_amount": loan.principal_amount,
                    "interest_rate": loan.interest_rate,
                    "duration_months": duration_months,
                    "total_amount": loan.total_amount,
                    "status": loan.status,
                    "next_payment_date": loan.next_payment_date
                },
                user_id=actor.user_id
            )
        log_action(logger, "info", "Loan created", user_id=actor.user_id,
                   action="create_loan", loan_id=loan.id)
        return loan
    
    def get_loan(self, actor: Actor, loan_id: str) -> LoanAccount:
        loan = self.repository.require(loan_id)
        require_party(actor, loan)
        return loan
    
    def list_loans(self, actor: Actor) -> List[LoanAccount]:
        """Loans the actor lends or borrows, newest first"""
        if actor.role == PartyRole.OWNER:
            return self.repository.find_for_owner(actor.user_id)
        return self.repository.find_for_borrower(actor.user_id)
    
    def loan_summary(self, actor: Actor, loan_id: str, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """Loan with its status derived at the given instant"""
        loan = self.get_loan(actor, loan_id)
        as_of = as_of or self.clock()
        summary = loan.to_dict()
        summary["status"] = ledger.effective_status(loan, as_of).value
        summary["is_overdue"] = ledger.is_overdue(loan, as_of)
        summary["overpaid_amount"] = str(loan.overpaid_amount)
        return summary
    
    def record_payment(
        self,
        actor: Actor,
        loan_id: str,
        amount,
        method: PaymentMethod = PaymentMethod.ONLINE,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> LoanAccount:
        """Record a payment made by the borrower, entered by either party"""
        with self._lock_for(loan_id):
            loan = self.repository.require(loan_id)
            require_party(actor, loan)
            
            updated = ledger.record_payment(
                loan, amount, method,
                transaction_id=transaction_id, notes=notes, now=self.clock()
            )
            payment = updated.payment_history[-1]
            
            # Loan state and its audit events commit together
            with self.storage.atomic():
                self.repository.save(updated)
                self.audit_trail.log_event(
                    AuditEventType.LOAN_PAYMENT_RECORDED, "loan", loan_id,
                    {
                        "amount": payment.amount,
                        "method": payment.method,
                        "transaction_id": transaction_id,
                        "amount_paid": updated.amount_paid,
                        "balance_amount": updated.balance_amount,
                        "next_payment_date": updated.next_payment_date
                    },
                    user_id=actor.user_id
                )
                self._log_completion(actor, loan, updated)
        
        log_action(logger, "info", "Payment recorded", user_id=actor.user_id,
                   action="record_payment", loan_id=loan_id,
                   extra={"amount": str(payment.amount), "balance": str(updated.balance_amount)})
        return updated
    
    def apply_manual_correction(
        self,
        actor: Actor,
        loan_id: str,
        amount_paid=None,
        last_payment_date: Optional[datetime] = None
    ) -> LoanAccount:
        """Owner override of the amount paid and/or last payment date"""
        with self._lock_for(loan_id):
            loan = self.repository.require(loan_id)
            require_loan_owner(actor, loan)
            
            updated = ledger.apply_manual_correction(
                loan, new_amount_paid=amount_paid,
                new_last_payment_date=last_payment_date, now=self.clock()
            )
            
            with self.storage.atomic():
                self.repository.save(updated)
                self.audit_trail.log_event(
                    AuditEventType.LOAN_CORRECTED, "loan", loan_id,
                    {
                        "previous_amount_paid": loan.amount_paid,
                        "amount_paid": updated.amount_paid,
                        "last_payment_date": updated.last_payment_date,
                        "status": updated.status
                    },
                    user_id=actor.user_id
                )
                self._log_completion(actor, loan, updated)
        
        log_action(logger, "info", "Loan corrected", user_id=actor.user_id,
                   action="apply_manual_correction", loan_id=loan_id)
        return updated
    
    def delete_loan(self, actor: Actor, loan_id: str) -> None:
        """Remove a completed loan"""
        with self._lock_for(loan_id):
            loan = self.repository.require(loan_id)
            require_party(actor, loan)
            ledger.ensure_deletable(loan)
            
            with self.storage.atomic():
                self.repository.delete_if_completed(loan_id)
                self.audit_trail.log_event(
                    AuditEventType.LOAN_DELETED, "loan", loan_id,
                    {"owner_id": loan.owner_id, "borrower_id": loan.borrower_id},
                    user_id=actor.user_id
                )
        
        with self._locks_guard:
            self._locks.pop(loan_id, None)
        
        log_action(logger, "info", "Loan deleted", user_id=actor.user_id,
                   action="delete_loan", loan_id=loan_id)
    
    def _log_completion(self, actor: Actor, before: LoanAccount, after: LoanAccount) -> None:
        if before.status != LoanStatus.COMPLETED and after.status == LoanStatus.COMPLETED:
            self.audit_trail.log_event(
                AuditEventType.LOAN_COMPLETED, "loan", after.id,
                {"amount_paid": after.amount_paid, "total_amount": after.total_amount},
                user_id=actor.user_id
            )
