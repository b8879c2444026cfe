"""
Notification Module

Gateways that deliver a rendered message, and the templates for the two
reminder kinds: the borrower's upcoming-payment reminder and the owner's
payment-due notice. Content is opaque to gateways.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from decimal import Decimal
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Dict, Optional, Any
from zoneinfo import ZoneInfo
from abc import ABC, abstractmethod
import asyncio
import html
import logging
import smtplib

import httpx

from .config import LoanTrackerConfig
from .logging_config import get_logger
from .loans import LoanAccount
from .parties import Party


logger = get_logger("loan_tracker.notifications")


class NotificationKind(Enum):
    """Reminder kinds, each sent at most once per loan per cycle"""
    BORROWER_REMINDER = "borrower_reminder"
    OWNER_DUE_NOTICE = "owner_due_notice"


@dataclass(frozen=True)
class RenderedNotification:
    """Message ready for a gateway"""
    kind: NotificationKind
    recipient_address: str
    subject: str
    body: str


class NotificationGateway(ABC):
    """Delivers one message to one recipient"""
    
    @abstractmethod
    async def send(self, recipient_address: str, subject: str, body: str) -> bool:
        """Send a message. Returns True if it was accepted for delivery."""
        pass


class LogNotificationGateway(NotificationGateway):
    """Logs messages instead of sending them, for development"""
    
    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger
    
    async def send(self, recipient_address: str, subject: str, body: str) -> bool:
        self.log.info(f"EMAIL to {recipient_address}: {subject} ({len(body)} chars)")
        return True


class EmailNotificationGateway(NotificationGateway):
    """SMTP delivery with STARTTLS"""
    
    def __init__(
        self,
        host: str,
        port: int,
        user: Optional[str],
        password: Optional[str],
        sender: Optional[str] = None,
        timeout: float = 10.0
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.timeout = timeout
    
    def _build_message(self, recipient_address: str, subject: str, body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = recipient_address
        message["Subject"] = subject
        message.attach(MIMEText(body, "html"))
        return message
    
    def _send_blocking(self, recipient_address: str, subject: str, body: str) -> None:
        message = self._build_message(recipient_address, subject, body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.sendmail(self.sender, [recipient_address], message.as_string())
    
    async def send(self, recipient_address: str, subject: str, body: str) -> bool:
        if not self.sender:
            logger.error("Email gateway has no sender configured")
            return False
        await asyncio.to_thread(self._send_blocking, recipient_address, subject, body)
        logger.info(f"Email sent to {recipient_address}")
        return True


class WebhookNotificationGateway(NotificationGateway):
    """Posts messages as JSON to an external delivery service"""
    
    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client
    
    async def send(self, recipient_address: str, subject: str, body: str) -> bool:
        payload = {
            "recipient": recipient_address,
            "subject": subject,
            "body": body,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        if self._client is not None:
            response = await self._client.post(self.url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
        
        if response.is_success:
            return True
        logger.warning(f"Webhook rejected message for {recipient_address}: HTTP {response.status_code}")
        return False


def build_gateway(settings: LoanTrackerConfig) -> NotificationGateway:
    """Gateway selected by configuration"""
    if settings.notification_gateway == "email":
        return EmailNotificationGateway(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_sender,
            timeout=settings.notification_timeout_seconds
        )
    if settings.notification_gateway == "webhook":
        if not settings.webhook_url:
            raise ValueError("webhook_url must be set for the webhook gateway")
        return WebhookNotificationGateway(settings.webhook_url, timeout=settings.notification_timeout_seconds)
    if settings.notification_gateway == "log":
        return LogNotificationGateway()
    raise ValueError(f"Unknown notification gateway: {settings.notification_gateway}")


# Templates

@dataclass(frozen=True)
class NotificationTemplate:
    """Subject and HTML body with {placeholders}"""
    kind: NotificationKind
    subject_template: str
    body_template: str
    
    def render(self, data: Dict[str, Any]) -> tuple:
        return self.subject_template.format(**data), self.body_template.format(**data)


BORROWER_REMINDER_TEMPLATE = NotificationTemplate(
    kind=NotificationKind.BORROWER_REMINDER,
    subject_template="Payment Reminder - {app_name}",
    body_template="""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2196F3;">Payment Reminder</h2>
  <p>Dear {recipient_name},</p>
  <p>This is a reminder that your monthly payment is due on {due_date}.</p>
  <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3>Payment Details:</h3>
    <p><strong>Owner:</strong> {counterparty_name}</p>
    <p><strong>Owner Email:</strong> {counterparty_email}</p>
    <p><strong>Monthly Amount:</strong> {monthly_amount}</p>
    <p><strong>Due Date:</strong> {due_date}</p>
    <p><strong>Balance Amount:</strong> {balance_amount}</p>
    <p><strong>GPay Mobile:</strong> {payment_collection_id}</p>
  </div>
  <div style="background: #e3f2fd; padding: 15px; border-radius: 8px; margin: 20px 0;">
    <h4>Payment Instructions:</h4>
    <p>You can make the payment using the owner's QR code or GPay mobile number provided above.</p>
    <p><strong>Important:</strong> After making the payment, please send a screenshot to the owner's email: {counterparty_email}</p>
  </div>
  <p>Thank you for your prompt attention to this matter.</p>
  <p>Best regards,<br>{app_name} Team</p>
</div>
""")

OWNER_DUE_NOTICE_TEMPLATE = NotificationTemplate(
    kind=NotificationKind.OWNER_DUE_NOTICE,
    subject_template="Payment Due Today - {app_name}",
    body_template="""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2196F3;">Payment Due Notification</h2>
  <p>Dear {recipient_name},</p>
  <p>This is to inform you that a monthly payment is due today.</p>
  <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3>Payment Details:</h3>
    <p><strong>Borrower:</strong> {counterparty_name}</p>
    <p><strong>Borrower Email:</strong> {counterparty_email}</p>
    <p><strong>Monthly Amount:</strong> {monthly_amount}</p>
    <p><strong>Due Date:</strong> {due_date}</p>
    <p><strong>Balance Amount:</strong> {balance_amount}</p>
  </div>
  <p>Please check your payment methods for any incoming payments.</p>
  <p>Best regards,<br>{app_name} Team</p>
</div>
""")

TEMPLATES = {
    NotificationKind.BORROWER_REMINDER: BORROWER_REMINDER_TEMPLATE,
    NotificationKind.OWNER_DUE_NOTICE: OWNER_DUE_NOTICE_TEMPLATE
}


def resolve_timezone(name: str):
    """tzinfo for a zone name; UTC needs no tz database"""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def format_amount(amount: Decimal, currency_symbol: str) -> str:
    """1234567.5 -> ₹1,234,567.50"""
    return f"{currency_symbol}{amount:,.2f}"


def format_due_date(value: datetime, tz_name: str) -> str:
    return value.astimezone(resolve_timezone(tz_name)).strftime("%d %b %Y")


def render_notification(
    kind: NotificationKind,
    loan: LoanAccount,
    owner: Party,
    borrower: Party,
    settings: LoanTrackerConfig
) -> RenderedNotification:
    """Fill the template of a notification kind for one loan"""
    if kind == NotificationKind.BORROWER_REMINDER:
        recipient, counterparty = borrower, owner
    else:
        recipient, counterparty = owner, borrower
    
    data = {
        "app_name": html.escape(settings.app_name),
        "recipient_name": html.escape(recipient.name),
        "counterparty_name": html.escape(counterparty.name),
        "counterparty_email": html.escape(counterparty.email),
        "monthly_amount": format_amount(loan.monthly_amount, settings.currency_symbol),
        "balance_amount": format_amount(loan.balance_amount, settings.currency_symbol),
        "due_date": format_due_date(loan.next_payment_date, settings.notification_timezone),
        "payment_collection_id": html.escape(owner.gpay_access)
    }
    subject, body = TEMPLATES[kind].render(data)
    
    return RenderedNotification(
        kind=kind,
        recipient_address=recipient.email,
        subject=html.unescape(subject),
        body=body
    )
