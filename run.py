#!/usr/bin/env python3
"""
Loan Tracker Entry Point

Runs the notification scheduler until interrupted, scanning active loans
once per configured interval.
"""

import asyncio
import signal
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from loan_tracker.audit import AuditTrail
from loan_tracker.config import get_config
from loan_tracker.loans import LoanRepository
from loan_tracker.logging_config import setup_logging
from loan_tracker.notifications import build_gateway
from loan_tracker.parties import PartyDirectory
from loan_tracker.scheduler import DedupStore, NotificationScheduler
from loan_tracker.storage import SQLiteStorage


async def main() -> None:
    settings = get_config()
    logger = setup_logging(settings.log_level, log_format=settings.log_format)
    
    storage = SQLiteStorage(settings.database_path)
    scheduler = NotificationScheduler(
        repository=LoanRepository(storage),
        parties=PartyDirectory(storage),
        gateway=build_gateway(settings),
        dedup=DedupStore(storage, claim_ttl_seconds=settings.claim_ttl_seconds),
        settings=settings,
        audit_trail=AuditTrail(storage)
    )
    
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    
    logger.info(f"Scanning every {settings.scan_interval_seconds}s using {settings.notification_gateway} gateway")
    scheduler.start()
    try:
        await stop.wait()
    finally:
        await scheduler.stop()
        storage.close()
        logger.info("Shutting down loan tracker")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception as e:
        print(f"Error starting loan tracker: {e}")
        sys.exit(1)
