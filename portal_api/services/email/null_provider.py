from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence

from .email_provider import Attachment, EmailProvider, SendResult

class NullProvider(EmailProvider):
    """No-op provider for local/dev or when EMAIL_PROVIDER=none. Always returns ok=True.

    Messages are kept in ``outbox`` so they can be inspected from a shell or a test.
    """

    name = "none"

    def __init__(self) -> None:
        self.outbox: List[Dict[str, Any]] = []

    def send_email(self, *, to: str, subject: str, html: str, text: Optional[str] = None, from_email: Optional[str] = None, from_name: Optional[str] = None, reply_to: Optional[str] = None, attachments: Optional[Sequence[Attachment]] = None) -> SendResult:
        self.outbox.append({
            "to": to,
            "subject": subject,
            "html": html,
            "text": text,
            "reply_to": reply_to,
            "attachments": list(attachments or []),
        })
        return SendResult(ok=True, provider=self.name, message_id=f"noop-{len(self.outbox)}")
