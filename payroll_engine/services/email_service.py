"""
Payroll Engine - Email Service

Handles transactional email sending for payroll notifications.
Supports SendGrid or SMTP, with a mock provider for development.

A delivery attempt is best-effort: a failure is logged and reported as False,
never raised. Retries with backoff belong to the caller (the Celery email
task), so no payroll request ever waits on mail delivery.
"""

import asyncio
import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import httpx

from payroll_engine.config import settings
from payroll_engine.utils.error_handling import DependencyException

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailProvider:
    """Email provider types."""
    SMTP = "smtp"
    SENDGRID = "sendgrid"
    MOCK = "mock"


@dataclass
class EmailMessage:
    """Email message data structure."""
    to: List[str]
    subject: str
    body_text: str
    body_html: Optional[str] = None
    cc: Optional[List[str]] = None
    reply_to: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None


class MailDispatcher:
    """
    Sends transactional email through the configured provider.

    Constructed by the worker task that delivers the message.
    """

    def __init__(self, provider: Optional[str] = None):
        self.provider = (provider or settings.email_provider or EmailProvider.MOCK).lower()

        self.from_email = settings.email_from
        self.from_name = settings.mail_from_name
        self.timeout = settings.mail_timeout_seconds

        # SMTP settings
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.mail_port
        self.smtp_username = settings.mail_username
        self.smtp_password = settings.mail_password
        self.smtp_use_tls = settings.mail_use_tls

        # SendGrid settings
        self.sendgrid_api_key = settings.sendgrid_api_key

    async def send(
        self,
        to: List[str],
        subject: str,
        body: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        body_html: Optional[str] = None,
    ) -> bool:
        """Single delivery attempt. Returns False on any failure."""
        message = EmailMessage(
            to=to, subject=subject, body_text=body, body_html=body_html, attachments=attachments
        )
        return await self.send_email(message)

    async def send_email(self, message: EmailMessage) -> bool:
        """Send an email using the configured provider."""
        try:
            if self.provider == EmailProvider.SENDGRID:
                return await self._send_via_sendgrid(message)
            elif self.provider == EmailProvider.SMTP:
                return await self._send_via_smtp(message)
            else:
                return await self._send_mock(message)
        except Exception as e:
            logger.error(f"Failed to send email via {self.provider}: {e}")
            return False

    async def _send_via_sendgrid(self, message: EmailMessage) -> bool:
        """Send email via SendGrid API."""
        payload = {
            "personalizations": [
                {
                    "to": [{"email": email} for email in message.to],
                }
            ],
            "from": {
                "email": self.from_email,
                "name": self.from_name,
            },
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.body_text},
            ],
        }

        if message.body_html:
            payload["content"].append({
                "type": "text/html",
                "value": message.body_html,
            })

        if message.cc:
            payload["personalizations"][0]["cc"] = [
                {"email": email} for email in message.cc
            ]

        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}

        if message.attachments:
            payload["attachments"] = [
                {"content": a["content"], "filename": a["filename"]}
                for a in message.attachments
            ]

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                SENDGRID_URL,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.sendgrid_api_key}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code in [200, 202]:
            logger.info(f"Email sent via SendGrid to {message.to}")
            return True

        raise DependencyException(
            "sendgrid", f"SendGrid API error: {response.status_code} - {response.text}"
        )

    async def _send_via_smtp(self, message: EmailMessage) -> bool:
        """Send email via SMTP."""
        msg = MIMEMultipart('alternative')
        msg['Subject'] = message.subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = ', '.join(message.to)

        if message.cc:
            msg['Cc'] = ', '.join(message.cc)

        if message.reply_to:
            msg['Reply-To'] = message.reply_to

        msg.attach(MIMEText(message.body_text, 'plain'))
        if message.body_html:
            msg.attach(MIMEText(message.body_html, 'html'))

        for attachment in message.attachments or []:
            part = MIMEBase('application', 'octet-stream')
            part.set_payload(attachment['content'])
            encoders.encode_base64(part)
            part.add_header(
                'Content-Disposition',
                f'attachment; filename="{attachment["filename"]}"'
            )
            msg.attach(part)

        recipients = message.to + (message.cc or [])
        await asyncio.to_thread(self._smtp_deliver, recipients, msg.as_string())

        logger.info(f"Email sent via SMTP to {message.to}")
        return True

    def _smtp_deliver(self, recipients: List[str], raw: str) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            if self.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, recipients, raw)

    async def _send_mock(self, message: EmailMessage) -> bool:
        """Mock email sending for development."""
        logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
        logger.debug(f"[MOCK EMAIL] Body: {message.body_text[:200]}...")
        return True

    # ===========================================
    # PAYROLL EMAIL TEMPLATES
    # ===========================================

    async def send_payroll_status_email(
        self,
        to_email: str,
        recipient_name: str,
        title: str,
        message: str,
        net_pay: Optional[str] = None,
    ) -> bool:
        """Notify an employee or approver about a payroll status change. One attempt."""
        amount_line = f"Net pay: {settings.payroll_currency} {net_pay}\n" if net_pay else ""
        body_text = (
            f"Hi {recipient_name},\n\n"
            f"{message}\n"
            f"{amount_line}\n"
            f"Regards,\n{self.from_name}"
        )
        body_html = (
            f"<p>Hi {html.escape(recipient_name)},</p>"
            f"<p>{html.escape(message)}</p>"
            + (
                f"<p><strong>Net pay:</strong> {settings.payroll_currency} {html.escape(str(net_pay))}</p>"
                if net_pay else ""
            )
            + f"<p>Regards,<br>{html.escape(self.from_name)}</p>"
        )
        return await self.send([to_email], title, body_text, body_html=body_html)
