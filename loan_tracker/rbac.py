"""
Authorization Module

The identity service has already authenticated the caller and validated
their role; these checks decide what that caller may do to a given loan.
"""

from dataclasses import dataclass

from .loans import LoanAccount
from .parties import PartyRole
from .exceptions import AuthorizationError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller"""
    user_id: str
    role: PartyRole
    
    @property
    def is_owner(self) -> bool:
        return self.role == PartyRole.OWNER


def is_party(actor: Actor, loan: LoanAccount) -> bool:
    """Caller is the loan's owner or its borrower"""
    return actor.user_id in (loan.owner_id, loan.borrower_id)


def is_owner_of(actor: Actor, loan: LoanAccount) -> bool:
    return actor.is_owner and actor.user_id == loan.owner_id


def require_owner_role(actor: Actor, action: str = "perform this action") -> None:
    if not actor.is_owner:
        raise AuthorizationError(f"Only owners can {action}")


def require_party(actor: Actor, loan: LoanAccount) -> None:
    if not is_party(actor, loan):
        raise AuthorizationError(f"Access denied to loan {loan.id}")


def require_loan_owner(actor: Actor, loan: LoanAccount) -> None:
    require_owner_role(actor, "update loan status")
    if actor.user_id != loan.owner_id:
        raise AuthorizationError(f"Access denied to loan {loan.id}")
