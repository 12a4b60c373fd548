from __future__ import annotations
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional, Sequence

from .email_provider import Attachment, EmailProvider, SendResult

logger = logging.getLogger(__name__)


class SMTPProvider(EmailProvider):
    """Plain SMTP delivery. Port 465 uses implicit TLS, anything else STARTTLS."""

    name = "smtp"

    def __init__(
        self,
        *,
        host: Optional[str],
        port: int,
        user: Optional[str],
        password: Optional[str],
        default_from: Optional[str],
        default_from_name: Optional[str],
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.default_from = default_from or user
        self.default_from_name = default_from_name

    def _build_message(self, to: str, subject: str, html: str, text: Optional[str], from_email: str, from_name: Optional[str], reply_to: Optional[str], attachments: Sequence[Attachment] = ()) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
        msg["To"] = to
        if reply_to:
            msg["Reply-To"] = reply_to
        msg.set_content(text or "This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")
        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            msg.add_attachment(attachment.content, maintype=maintype, subtype=subtype or "octet-stream", filename=attachment.filename)
        return msg

    def send_email(self, *, to: str, subject: str, html: str, text: Optional[str] = None, from_email: Optional[str] = None, from_name: Optional[str] = None, reply_to: Optional[str] = None, attachments: Optional[Sequence[Attachment]] = None) -> SendResult:
        if not self.host or not self.user or not self.password:
            return SendResult.failed(self.name, "SMTP credentials not configured")

        msg = self._build_message(
            to, subject, html, text,
            from_email or self.default_from,
            from_name or self.default_from_name,
            reply_to,
            attachments or (),
        )
        context = ssl.create_default_context()
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, context=context) as smtp:
                    smtp.login(self.user, self.password)
                    smtp.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port) as smtp:
                    smtp.ehlo()
                    smtp.starttls(context=context)
                    smtp.ehlo()
                    smtp.login(self.user, self.password)
                    smtp.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self.user}: {e}")
            return SendResult.failed(self.name, f"SMTP authentication failed: {e}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {to} failed: {e}")
            return SendResult.failed(self.name, f"SMTP error: {e}")

        return SendResult(ok=True, provider=self.name, message_id=msg.get("Message-ID"))
