"""
Audit Trail Module

Hash-chained append-only log of loan events with SHA-256 for tamper
detection. Every ledger change and every delivery attempt is logged here.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    LOAN_CREATED = "loan_created"
    LOAN_PAYMENT_RECORDED = "loan_payment_recorded"
    LOAN_CORRECTED = "loan_corrected"
    LOAN_COMPLETED = "loan_completed"
    LOAN_DELETED = "loan_deleted"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"


def _convert_value(value):
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _convert_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_convert_value(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None
    
    def __post_init__(self):
        # Metadata must survive a JSON round trip unchanged for the hash to verify
        self.metadata = {k: _convert_value(v) for k, v in (self.metadata or {}).items()}
    
    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()
    
    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """
    
    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._last_hash = ""
        self._sequence = 0
        self._load_chain_head()
    
    def _load_chain_head(self) -> None:
        events = self.storage.load_all(self.table_name)
        if events:
            head = max(events, key=lambda e: e['sequence'])
            self._last_hash = head['current_hash']
            self._sequence = head['sequence']
    
    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining
        
        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action
            
        Returns:
            Created AuditEvent
        """
        # Storage lock before chain lock, the same order as callers inside atomic()
        with self.storage.atomic(), self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=self._sequence + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash,
                current_hash="",
                user_id=user_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()
            
            self.storage.save(self.table_name, event.id, event.to_dict())
            
            self._last_hash = event.current_hash
            self._sequence = event.sequence
            return event
    
    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events of one entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)
        return events
    
    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        events_data = self.storage.find(self.table_name, {'event_type': event_type.value})
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)
        return events
    
    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain
        
        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }
        
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda x: x.sequence)
        result['total_events'] = len(events)
        
        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash
        
        return result
    
    def count_events(self) -> int:
        return self.storage.count(self.table_name)
