"""
Notification Scheduler Module

Periodic scan over active loans that sends the borrower reminder and the
owner due notice at most once per loan per cycle. A cycle is identified by
the loan's current next payment date, so dedup keys reset by themselves
when a payment moves that date forward.
"""

from datetime import datetime, timezone, timedelta, time
from dataclasses import dataclass, field
from typing import Callable, Optional
import asyncio

from .audit import AuditTrail, AuditEventType
from .config import LoanTrackerConfig, get_config
from .exceptions import NotificationDeliveryError, NotificationTimeoutError
from .logging_config import get_logger
from .loans import LoanAccount, LoanRepository
from .notifications import (
    NotificationGateway, NotificationKind, RenderedNotification, render_notification, resolve_timezone
)
from .parties import PartyDirectory
from .storage import StorageInterface


logger = get_logger("loan_tracker.scheduler")

Clock = Callable[[], datetime]

CLAIMED = "claimed"
SENT = "sent"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DedupStore:
    """
    Records which notifications went out for which cycle.
    
    A key is claimed atomically before sending, then either marked sent or
    released. Two overlapping scans can never both win the same claim. A
    claim whose send timed out is kept until it goes stale, since the
    message may still have been delivered.
    """
    
    def __init__(
        self,
        storage: StorageInterface,
        table: str = "notification_dedup",
        claim_ttl_seconds: int = 6 * 60 * 60,
        clock: Clock = utc_now
    ):
        self.storage = storage
        self.table = table
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self.clock = clock
    
    @staticmethod
    def key(loan_id: str, cycle_marker: datetime, kind: NotificationKind) -> str:
        return f"{loan_id}|{cycle_marker.isoformat()}|{kind.value}"
    
    def is_recorded(self, loan_id: str, cycle_marker: datetime, kind: NotificationKind) -> bool:
        """Claimed or sent. Read-only view for callers and tests; scans never consult it."""
        return self.storage.exists(self.table, self.key(loan_id, cycle_marker, kind))
    
    def is_sent(self, loan_id: str, cycle_marker: datetime, kind: NotificationKind) -> bool:
        """Delivery confirmed. Read-only view, like is_recorded."""
        record = self.storage.load(self.table, self.key(loan_id, cycle_marker, kind))
        return bool(record) and record["status"] == SENT
    
    def claim(self, loan_id: str, cycle_marker: datetime, kind: NotificationKind) -> bool:
        """Reserve a key. False means it is already claimed or sent."""
        return self.storage.insert_if_absent(self.table, self.key(loan_id, cycle_marker, kind), {
            "loan_id": loan_id,
            "cycle_marker": cycle_marker.isoformat(),
            "kind": kind.value,
            "status": CLAIMED,
            "claimed_at": self.clock().isoformat()
        })
    
    def mark_sent(self, loan_id: str, cycle_marker: datetime, kind: NotificationKind) -> None:
        key = self.key(loan_id, cycle_marker, kind)
        record = self.storage.load(self.table, key) or {
            "loan_id": loan_id,
            "cycle_marker": cycle_marker.isoformat(),
            "kind": kind.value
        }
        record["status"] = SENT
        record["sent_at"] = self.clock().isoformat()
        self.storage.save(self.table, key, record)
    
    def release(self, loan_id: str, cycle_marker: datetime, kind: NotificationKind) -> None:
        """Drop a claim so the next scan retries. Sent keys are kept."""
        key = self.key(loan_id, cycle_marker, kind)
        record = self.storage.load(self.table, key)
        if record and record["status"] == CLAIMED:
            self.storage.delete(self.table, key)
    
    def release_stale_claims(self) -> int:
        """Release claims older than the TTL: timed-out sends and interrupted processes"""
        cutoff = self.clock() - self.claim_ttl
        released = 0
        for record in self.storage.find(self.table, {"status": CLAIMED}):
            if datetime.fromisoformat(record["claimed_at"]) < cutoff:
                key = self.key(
                    record["loan_id"],
                    datetime.fromisoformat(record["cycle_marker"]),
                    NotificationKind(record["kind"])
                )
                if self.storage.delete(self.table, key):
                    released += 1
        return released


@dataclass
class ScanResult:
    """Outcome of one scan"""
    as_of: datetime
    loans_scanned: int = 0
    reminders_sent: int = 0
    due_notices_sent: int = 0
    duplicates_skipped: int = 0
    failures: int = 0
    failed_loans: list = field(default_factory=list)


class NotificationScheduler:
    """
    Drives reminder delivery for all active loans.
    
    The clock and dedup store are injected so that tests can run scans at
    chosen instants instead of waiting for real time to pass.
    """
    
    def __init__(
        self,
        repository: LoanRepository,
        parties: PartyDirectory,
        gateway: NotificationGateway,
        dedup: DedupStore,
        settings: Optional[LoanTrackerConfig] = None,
        clock: Clock = utc_now,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.repository = repository
        self.parties = parties
        self.gateway = gateway
        self.dedup = dedup
        self.settings = settings or get_config()
        self.clock = clock
        self.audit_trail = audit_trail
        
        self.tz = resolve_timezone(self.settings.notification_timezone)
        self.reminder_window = timedelta(days=self.settings.reminder_window_days)
        self.timeout = self.settings.notification_timeout_seconds
        
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
    
    # Predicates
    
    def needs_borrower_reminder(self, loan: LoanAccount, as_of: datetime) -> bool:
        """Due within the reminder window, both ends inclusive"""
        return loan.is_active and as_of <= loan.next_payment_date <= as_of + self.reminder_window
    
    def needs_owner_notice(self, loan: LoanAccount, as_of: datetime) -> bool:
        """Due on the same calendar day as the scan, time of day ignored"""
        return loan.is_active and self._local_date(loan.next_payment_date) == self._local_date(as_of)
    
    def _local_date(self, value: datetime):
        return value.astimezone(self.tz).date()
    
    def _start_of_day(self, value: datetime) -> datetime:
        local_midnight = datetime.combine(self._local_date(value), time.min, tzinfo=self.tz)
        return local_midnight.astimezone(timezone.utc)
    
    # Scanning
    
    async def scan(self) -> ScanResult:
        """
        Evaluate every active loan due between the start of today and the
        end of the reminder window, and send what is owed.
        
        A failing loan is logged and skipped; it never stops the scan.
        """
        as_of = self.clock()
        result = ScanResult(as_of=as_of)
        
        released = self.dedup.release_stale_claims()
        if released:
            logger.warning(f"Released {released} stale notification claims")
        
        loans = self.repository.find_active_due_between(
            self._start_of_day(as_of), as_of + self.reminder_window
        )
        result.loans_scanned = len(loans)
        
        for loan in loans:
            try:
                await self._process_loan(loan, as_of, result)
            except Exception as e:
                result.failures += 1
                result.failed_loans.append(loan.id)
                logger.error(f"Notification processing failed for loan {loan.id}: {e}")
        
        logger.info(
            f"Sent {result.reminders_sent} payment reminders and "
            f"{result.due_notices_sent} due payment notifications "
            f"({result.loans_scanned} loans scanned, {result.duplicates_skipped} already notified, "
            f"{result.failures} failed)"
        )
        return result
    
    async def _process_loan(self, loan: LoanAccount, as_of: datetime, result: ScanResult) -> None:
        kinds = []
        if self.needs_borrower_reminder(loan, as_of):
            kinds.append(NotificationKind.BORROWER_REMINDER)
        if self.needs_owner_notice(loan, as_of):
            kinds.append(NotificationKind.OWNER_DUE_NOTICE)
        if not kinds:
            return
        
        owner = self.parties.require(loan.owner_id)
        borrower = self.parties.require(loan.borrower_id)
        
        for kind in kinds:
            rendered = render_notification(kind, loan, owner, borrower, self.settings)
            outcome = await self._notify_once(loan, rendered)
            
            if outcome is None:
                result.duplicates_skipped += 1
            elif outcome:
                if kind == NotificationKind.BORROWER_REMINDER:
                    result.reminders_sent += 1
                else:
                    result.due_notices_sent += 1
            else:
                result.failures += 1
                result.failed_loans.append(loan.id)
    
    async def _notify_once(self, loan: LoanAccount, rendered: RenderedNotification) -> Optional[bool]:
        """
        Claim, send, and record one notification.
        
        Returns None when this cycle was already notified, True when sent
        and False when delivery failed. A failed claim is released for the
        next scan; a timed-out one is kept until it goes stale.
        """
        cycle_marker = loan.next_payment_date
        if not self.dedup.claim(loan.id, cycle_marker, rendered.kind):
            return None
        
        try:
            await self._deliver(rendered)
        except NotificationTimeoutError as e:
            # Outcome unknown: keep the claim so only a stale-claim sweep retries
            logger.error(f"{rendered.kind.value} for loan {loan.id} not confirmed: {e}")
            self._audit(AuditEventType.NOTIFICATION_FAILED, loan, rendered, error=str(e))
            return False
        except NotificationDeliveryError as e:
            self.dedup.release(loan.id, cycle_marker, rendered.kind)
            logger.error(f"{rendered.kind.value} for loan {loan.id} not delivered: {e}")
            self._audit(AuditEventType.NOTIFICATION_FAILED, loan, rendered, error=str(e))
            return False
        
        self.dedup.mark_sent(loan.id, cycle_marker, rendered.kind)
        self._audit(AuditEventType.NOTIFICATION_SENT, loan, rendered)
        return True
    
    async def _deliver(self, rendered: RenderedNotification) -> None:
        try:
            delivered = await asyncio.wait_for(
                self.gateway.send(rendered.recipient_address, rendered.subject, rendered.body),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise NotificationTimeoutError(f"Gateway timed out after {self.timeout}s") from e
        except Exception as e:
            raise NotificationDeliveryError(f"Gateway error: {e}") from e
        
        if not delivered:
            raise NotificationDeliveryError("Gateway reported failure")
    
    def _audit(self, event_type: AuditEventType, loan: LoanAccount,
               rendered: RenderedNotification, error: Optional[str] = None) -> None:
        if not self.audit_trail:
            return
        metadata = {
            "kind": rendered.kind.value,
            "recipient": rendered.recipient_address,
            "cycle_marker": loan.next_payment_date
        }
        if error:
            metadata["error"] = error
        self.audit_trail.log_event(event_type, "loan", loan.id, metadata)
    
    # Recurring task
    
    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
    
    def start(self) -> asyncio.Task:
        """Start scanning on the configured interval. Must run inside an event loop."""
        if self.is_running:
            return self._task
        
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Notification scheduler started")
        return self._task
    
    async def stop(self) -> None:
        if not self.is_running:
            return
        self._stop_event.set()
        await self._task
        logger.info("Notification scheduler stopped")
    
    async def _run(self) -> None:
        interval = self.settings.scan_interval_seconds
        while not self._stop_event.is_set():
            try:
                await self.scan()
            except Exception:
                logger.exception("Notification scan failed")
            
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
