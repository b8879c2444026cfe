"""
Tests for the party directory
"""

import pytest

from loan_tracker.exceptions import NotFoundError
from loan_tracker.parties import Party, PartyDirectory, PartyRole
from loan_tracker.storage import InMemoryStorage


def make_party(party_id: str, name: str, role: PartyRole, **kwargs) -> Party:
    return Party(
        id=party_id, created_at=None, updated_at=None,
        name=name, email=f"{party_id.lower()}@example.com", role=role, **kwargs
    )


@pytest.fixture
def directory():
    return PartyDirectory(InMemoryStorage())


class TestParty:
    """Test party normalization"""
    
    def test_email_and_name_are_normalized(self):
        party = Party(
            id="P1", created_at=None, updated_at=None,
            name="  Olivia Owner ", email=" Olivia@Example.COM ", role=PartyRole.OWNER
        )
        
        assert party.name == "Olivia Owner"
        assert party.email == "olivia@example.com"


class TestPartyDirectory:
    """Test registration and lookup"""
    
    def test_register_and_get(self, directory):
        registered = directory.register(make_party("OWNER001", "Olivia", PartyRole.OWNER, gpay_access="98765"))
        
        loaded = directory.get("OWNER001")
        assert registered.created_at is not None
        assert loaded.role == PartyRole.OWNER
        assert loaded.gpay_access == "98765"
        assert loaded.email == "owner001@example.com"
    
    def test_require_missing(self, directory):
        assert directory.get("missing") is None
        with pytest.raises(NotFoundError):
            directory.require("missing")
    
    def test_list_by_role(self, directory):
        directory.register(make_party("B2", "zoe", PartyRole.BORROWER))
        directory.register(make_party("B1", "Adam", PartyRole.BORROWER))
        directory.register(make_party("B3", "Inactive", PartyRole.BORROWER, is_active=False))
        directory.register(make_party("O1", "Olivia", PartyRole.OWNER))
        
        assert [p.id for p in directory.list_by_role(PartyRole.BORROWER)] == ["B1", "B2"]
        assert [p.id for p in directory.list_by_role(PartyRole.OWNER)] == ["O1"]
    
    def test_update_profile_ignores_identity_fields(self, directory):
        directory.register(make_party("OWNER001", "Olivia", PartyRole.OWNER))
        
        updated = directory.update_profile("OWNER001", {
            "name": "Olivia O.",
            "mobile": "12345",
            "gpay_access": "olivia@upi",
            "email": "hijack@example.com",
            "role": "borrower",
            "password": "secret"
        })
        
        assert updated.name == "Olivia O."
        assert updated.mobile == "12345"
        assert updated.gpay_access == "olivia@upi"
        assert updated.email == "owner001@example.com"
        assert updated.role == PartyRole.OWNER
        assert directory.get("OWNER001").gpay_access == "olivia@upi"
    
    def test_update_missing_party(self, directory):
        with pytest.raises(NotFoundError):
            directory.update_profile("missing", {"name": "x"})
