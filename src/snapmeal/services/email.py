"""Email notifications for completed account jobs.

Users are told by email when their data export is ready and when their
account has been deleted. Messages are rendered from Jinja2 templates in
``snapmeal/templates/email`` and sent over SMTP.

Usage:
    from snapmeal.services.email import EmailService

    email = EmailService(settings.smtp)
    message = email.export_ready("user@example.com", download_url=url, expiry_days=7)
    result = await email.deliver(message)
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, PackageLoader, select_autoescape

if TYPE_CHECKING:
    from snapmeal.core.config import SMTPSettings

logger = logging.getLogger(__name__)

EXPORT_READY_SUBJECT = "Your data export is ready"
ACCOUNT_DELETED_SUBJECT = "Your account has been deleted"


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """An outbound email.

    Attributes:
        from_: Formatted sender, e.g. ``"SnapMeal" <noreply@yourapp.com>``.
        to: Recipient address.
        subject: Subject line.
        html: HTML body.
    """

    from_: str
    to: str
    subject: str
    html: str


@dataclass(frozen=True, slots=True)
class SendResult:
    """Result of a successful send.

    Attributes:
        message_id: Message-ID header assigned to the email.
        recipient: Address the email was sent to.
    """

    message_id: str
    recipient: str


class EmailError(Exception):
    """Base exception for email operations."""

    pass


class EmailDeliveryError(EmailError):
    """Raised when email delivery fails."""

    pass


class EmailService:
    """Renders and sends user notification emails over SMTP.

    Attributes:
        smtp_settings: SMTP configuration for email delivery.
    """

    def __init__(self, smtp_settings: SMTPSettings) -> None:
        self.smtp_settings = smtp_settings

        self._env = Environment(
            loader=PackageLoader("snapmeal", "templates/email"),
            autoescape=select_autoescape(["html", "xml"]),
        )

    @property
    def sender(self) -> str:
        """Formatted From header built from the SMTP settings."""
        return formataddr((self.smtp_settings.from_name, self.smtp_settings.from_address))

    def render(self, template_name: str, **context: Any) -> str:
        """Render an email template with the app name in scope."""
        template = self._env.get_template(template_name)
        return template.render(app_name=self.smtp_settings.from_name, **context)

    def export_ready(self, to: str, *, download_url: str, expiry_days: int) -> EmailMessage:
        """Build the "export ready" email carrying the download link."""
        return EmailMessage(
            from_=self.sender,
            to=to,
            subject=EXPORT_READY_SUBJECT,
            html=self.render(
                "export_ready.html",
                download_url=download_url,
                expiry_days=expiry_days,
            ),
        )

    def account_deleted(self, to: str) -> EmailMessage:
        """Build the account deletion confirmation email."""
        return EmailMessage(
            from_=self.sender,
            to=to,
            subject=ACCOUNT_DELETED_SUBJECT,
            html=self.render("account_deleted.html"),
        )

    async def deliver(self, message: EmailMessage) -> SendResult:
        """Send ``message`` without blocking the event loop.

        Raises:
            EmailDeliveryError: If the email cannot be sent.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.send, message)

    def send(self, message: EmailMessage) -> SendResult:
        """Send an email via SMTP.

        Args:
            message: The email to send.

        Returns:
            SendResult with the assigned Message-ID.

        Raises:
            EmailDeliveryError: If the email cannot be sent.
        """
        if not message.to:
            raise EmailDeliveryError("No recipient address")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.from_
        msg["To"] = message.to

        message_id = f"<{secrets.token_hex(16)}@{self._get_domain()}>"
        msg["Message-ID"] = message_id

        msg.attach(MIMEText(message.html, "html", "utf-8"))

        try:
            if self.smtp_settings.use_ssl:
                # Implicit TLS (port 465)
                context = ssl.create_default_context()
                server = smtplib.SMTP_SSL(
                    self.smtp_settings.host,
                    self.smtp_settings.port,
                    timeout=self.smtp_settings.timeout,
                    context=context,
                )
            else:
                server = smtplib.SMTP(
                    self.smtp_settings.host,
                    self.smtp_settings.port,
                    timeout=self.smtp_settings.timeout,
                )
                if self.smtp_settings.use_tls:
                    context = ssl.create_default_context()
                    server.starttls(context=context)

            if self.smtp_settings.username and self.smtp_settings.password:
                server.login(
                    self.smtp_settings.username,
                    self.smtp_settings.password.get_secret_value(),
                )

            server.sendmail(
                self.smtp_settings.from_address,
                [message.to],
                msg.as_string(),
            )
            server.quit()

        except smtplib.SMTPException as e:
            err = f"SMTP error: {e}"
            raise EmailDeliveryError(err) from e
        except OSError as e:
            err = f"Connection error: {e}"
            raise EmailDeliveryError(err) from e

        logger.info("Email sent: subject=%r, message_id=%s", message.subject, message_id)
        return SendResult(message_id=message_id, recipient=message.to)

    def _get_domain(self) -> str:
        """Domain part of the sender address, used in Message-IDs."""
        _, _, domain = self.smtp_settings.from_address.partition("@")
        return domain or "localhost"
