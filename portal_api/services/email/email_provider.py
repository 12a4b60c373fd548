from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

@dataclass
class SendResult:
    ok: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, provider: str, error: str) -> "SendResult":
        return cls(ok=False, provider=provider, error=error)

@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"

class EmailProvider(Protocol):
    """Outbound transactional email (quotes, status updates, invoices, receipts, wholesale welcome).

    ``send_email`` never raises: failures come back as ``SendResult(ok=False)``
    so that a notification cannot undo the order write that triggered it.
    ``name`` is what gets stored in ``email_logs.provider``.
    """

    name: str

    def send_email(self, *, to: str, subject: str, html: str, text: Optional[str] = None, from_email: Optional[str] = None, from_name: Optional[str] = None, reply_to: Optional[str] = None, attachments: Optional[Sequence[Attachment]] = None) -> SendResult:
        ...
