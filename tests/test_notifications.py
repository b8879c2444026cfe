"""
Tests for Notification Module

Tests template rendering, amount and date formatting, and the log, email
and webhook gateways.
"""

import pytest
import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import httpx

from loan_tracker import notifications
from loan_tracker.config import LoanTrackerConfig
from loan_tracker.loans import LoanAccount
from loan_tracker.notifications import (
    NotificationKind,
    LogNotificationGateway,
    EmailNotificationGateway,
    WebhookNotificationGateway,
    build_gateway,
    format_amount,
    format_due_date,
    render_notification
)
from loan_tracker.parties import Party, PartyRole


NOW = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return LoanTrackerConfig(app_name="Finance App", currency_symbol="₹")


@pytest.fixture
def owner():
    return Party(
        id="OWNER001", created_at=NOW, updated_at=NOW,
        name="Olivia Owner", email="olivia@example.com",
        role=PartyRole.OWNER, gpay_access="9876543210"
    )


@pytest.fixture
def borrower():
    return Party(
        id="BORROWER001", created_at=NOW, updated_at=NOW,
        name="Ben Borrower", email="ben@example.com",
        role=PartyRole.BORROWER
    )


@pytest.fixture
def loan():
    return LoanAccount(
        id="LOAN001",
        created_at=NOW,
        updated_at=NOW,
        owner_id="OWNER001",
        borrower_id="BORROWER001",
        principal_amount=Decimal('100000'),
        interest_rate=Decimal('12'),
        duration_months=12,
        total_amount=Decimal('112000.00'),
        monthly_amount=Decimal('9333.33'),
        start_date=NOW,
        next_payment_date=datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc),
        amount_paid=Decimal('2500.50')
    )


class TestFormatting:
    """Test amount and date formatting"""
    
    def test_format_amount_groups_thousands(self):
        assert format_amount(Decimal('1234567.5'), "₹") == "₹1,234,567.50"
        assert format_amount(Decimal('0'), "$") == "$0.00"
    
    def test_format_due_date(self):
        assert format_due_date(datetime(2024, 3, 5, 23, 0, tzinfo=timezone.utc), "UTC") == "05 Mar 2024"


class TestRendering:
    """Test rendering of both notification kinds"""
    
    def test_borrower_reminder(self, loan, owner, borrower, settings):
        rendered = render_notification(NotificationKind.BORROWER_REMINDER, loan, owner, borrower, settings)
        
        assert rendered.kind == NotificationKind.BORROWER_REMINDER
        assert rendered.recipient_address == "ben@example.com"
        assert rendered.subject == "Payment Reminder - Finance App"
        assert "Dear Ben Borrower" in rendered.body
        assert "Olivia Owner" in rendered.body
        assert "olivia@example.com" in rendered.body
        assert "₹9,333.33" in rendered.body
        assert "₹109,499.50" in rendered.body
        assert "15 Mar 2024" in rendered.body
        assert "9876543210" in rendered.body
    
    def test_owner_due_notice(self, loan, owner, borrower, settings):
        rendered = render_notification(NotificationKind.OWNER_DUE_NOTICE, loan, owner, borrower, settings)
        
        assert rendered.recipient_address == "olivia@example.com"
        assert rendered.subject == "Payment Due Today - Finance App"
        assert "Dear Olivia Owner" in rendered.body
        assert "Ben Borrower" in rendered.body
        assert "ben@example.com" in rendered.body
        assert "9876543210" not in rendered.body
    
    def test_party_values_are_escaped(self, loan, owner, borrower, settings):
        borrower.name = "<script>alert(1)</script>"
        
        rendered = render_notification(NotificationKind.BORROWER_REMINDER, loan, owner, borrower, settings)
        
        assert "<script>" not in rendered.body
        assert "&lt;script&gt;" in rendered.body
    
    def test_subject_is_plain_text(self, loan, owner, borrower):
        settings = LoanTrackerConfig(app_name="Pay & Track")
        
        rendered = render_notification(NotificationKind.OWNER_DUE_NOTICE, loan, owner, borrower, settings)
        
        assert rendered.subject == "Payment Due Today - Pay & Track"
        assert "Pay &amp; Track Team" in rendered.body


class TestLogGateway:
    """Test the development gateway"""
    
    def test_logs_and_succeeds(self):
        log = MagicMock()
        gateway = LogNotificationGateway(log=log)
        
        result = asyncio.run(gateway.send("ben@example.com", "Hello", "<p>body</p>"))
        
        assert result is True
        message = log.info.call_args[0][0]
        assert "ben@example.com" in message
        assert "Hello" in message


class TestEmailGateway:
    """Test SMTP delivery with a mocked server"""
    
    def test_sends_with_starttls_and_login(self, monkeypatch):
        smtp_cls = MagicMock()
        monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_cls)
        gateway = EmailNotificationGateway("smtp.example.com", 587, "app@example.com", "secret", timeout=3)
        
        result = asyncio.run(gateway.send("ben@example.com", "Reminder", "<p>Pay</p>"))
        
        assert result is True
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=3)
        server = smtp_cls.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("app@example.com", "secret")
        sender, recipients, message = server.sendmail.call_args[0]
        assert sender == "app@example.com"
        assert recipients == ["ben@example.com"]
        assert "Subject: Reminder" in message
    
    def test_skips_login_without_credentials(self, monkeypatch):
        smtp_cls = MagicMock()
        monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_cls)
        gateway = EmailNotificationGateway("localhost", 25, None, None, sender="noreply@example.com")
        
        assert asyncio.run(gateway.send("ben@example.com", "Reminder", "body")) is True
        
        server = smtp_cls.return_value.__enter__.return_value
        server.login.assert_not_called()
        assert server.sendmail.call_args[0][0] == "noreply@example.com"
    
    def test_no_sender_fails_without_connecting(self, monkeypatch):
        smtp_cls = MagicMock()
        monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_cls)
        gateway = EmailNotificationGateway("localhost", 25, None, None)
        
        assert asyncio.run(gateway.send("ben@example.com", "Reminder", "body")) is False
        smtp_cls.assert_not_called()
    
    def test_smtp_errors_propagate(self, monkeypatch):
        smtp_cls = MagicMock(side_effect=OSError("connection refused"))
        monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_cls)
        gateway = EmailNotificationGateway("localhost", 25, "app@example.com", "secret")
        
        with pytest.raises(OSError):
            asyncio.run(gateway.send("ben@example.com", "Reminder", "body"))


class TestWebhookGateway:
    """Test webhook delivery against a mock transport"""
    
    def _send(self, status_code: int, captured: list) -> bool:
        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(status_code)
        
        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                gateway = WebhookNotificationGateway("https://hooks.example.com/notify", client=client)
                return await gateway.send("ben@example.com", "Reminder", "<p>Pay</p>")
        
        return asyncio.run(run())
    
    def test_success(self):
        captured = []
        
        assert self._send(200, captured) is True
        
        request = captured[0]
        assert str(request.url) == "https://hooks.example.com/notify"
        payload = json.loads(request.content)
        assert payload["recipient"] == "ben@example.com"
        assert payload["subject"] == "Reminder"
        assert payload["body"] == "<p>Pay</p>"
        assert "timestamp" in payload
    
    def test_server_error_is_failure(self):
        assert self._send(500, []) is False


class TestBuildGateway:
    """Test gateway selection from configuration"""
    
    def test_default_is_log(self):
        assert isinstance(build_gateway(LoanTrackerConfig()), LogNotificationGateway)
    
    def test_email(self):
        gateway = build_gateway(LoanTrackerConfig(
            notification_gateway="email", smtp_user="app@example.com",
            smtp_password="secret", notification_timeout_seconds=4
        ))
        
        assert isinstance(gateway, EmailNotificationGateway)
        assert gateway.sender == "app@example.com"
        assert gateway.timeout == 4
    
    def test_webhook_requires_url(self):
        with pytest.raises(ValueError):
            build_gateway(LoanTrackerConfig(notification_gateway="webhook"))
        
        gateway = build_gateway(LoanTrackerConfig(
            notification_gateway="webhook", webhook_url="https://hooks.example.com"
        ))
        assert isinstance(gateway, WebhookNotificationGateway)
    
    def test_unknown_gateway(self):
        with pytest.raises(ValueError):
            build_gateway(LoanTrackerConfig(notification_gateway="carrier-pigeon"))
