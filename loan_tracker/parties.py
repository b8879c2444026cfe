"""
Party Directory Module

Owners and borrowers as the core sees them: display name, contact email
and the owner's payment-collection identifier. Credentials and photos
belong to the identity service, not here.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from .storage import StorageInterface, StorageRecord
from .exceptions import NotFoundError


class PartyRole(Enum):
    """Role of a party in a loan"""
    OWNER = "owner"
    BORROWER = "borrower"


@dataclass
class Party(StorageRecord):
    """A lender or borrower"""
    name: str
    email: str
    role: PartyRole
    mobile: str = ""
    gpay_access: str = ""       # Payment-collection identifier shown to borrowers
    is_active: bool = True
    
    def __post_init__(self):
        self.email = self.email.strip().lower()
        self.name = self.name.strip()
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["role"] = self.role.value
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Party':
        data = dict(data)
        data["role"] = PartyRole(data["role"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        return cls(**data)


class PartyDirectory:
    """Storage-backed lookup of parties"""
    
    # Fields a profile update may not touch
    PROTECTED_FIELDS = {"id", "email", "role", "created_at", "updated_at"}
    
    def __init__(self, storage: StorageInterface, table: str = "parties"):
        self.storage = storage
        self.table = table
    
    def register(self, party: Party) -> Party:
        now = datetime.now(timezone.utc)
        party.created_at = party.created_at or now
        party.updated_at = now
        self.storage.save(self.table, party.id, party.to_dict())
        return party
    
    def get(self, party_id: str) -> Optional[Party]:
        data = self.storage.load(self.table, party_id)
        if data:
            return Party.from_dict(data)
        return None
    
    def require(self, party_id: str) -> Party:
        party = self.get(party_id)
        if party is None:
            raise NotFoundError(f"Party {party_id} not found")
        return party
    
    def list_by_role(self, role: PartyRole) -> List[Party]:
        """Active parties holding a role"""
        data = self.storage.find(self.table, {"role": role.value, "is_active": True})
        parties = [Party.from_dict(item) for item in data]
        parties.sort(key=lambda p: p.name.lower())
        return parties
    
    def update_profile(self, party_id: str, updates: Dict[str, Any]) -> Party:
        """Apply profile changes, ignoring identity fields"""
        data = self.storage.load(self.table, party_id)
        if not data:
            raise NotFoundError(f"Party {party_id} not found")
        
        for key, value in updates.items():
            if key in self.PROTECTED_FIELDS or key not in data:
                continue
            data[key] = value
        data["updated_at"] = datetime.now(timezone.utc).isoformat()
        
        party = Party.from_dict(data)
        self.storage.save(self.table, party.id, party.to_dict())
        return party
