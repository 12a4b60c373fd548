from __future__ import annotations
import base64
import json
from typing import Dict, Optional, Sequence

import httpx

from .email_provider import Attachment, EmailProvider, SendResult

MAILERSEND_API_BASE = "https://api.mailersend.com/v1"


class MailerSendProvider(EmailProvider):
    """MailerSend transactional email provider adapter.

    Posts to MailerSend's v1/email endpoint. All errors are captured and
    returned via SendResult without raising exceptions.
    """

    name = "mailersend"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        default_from: Optional[str],
        default_from_name: Optional[str],
        timeout: float = 20.0,
    ) -> None:
        self.api_key = api_key
        self.default_from = default_from
        self.default_from_name = default_from_name
        self.timeout = timeout

    def _client(self) -> httpx.Client:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        return httpx.Client(base_url=MAILERSEND_API_BASE, headers=headers, timeout=self.timeout)

    @staticmethod
    def _recipient(email: str, name: Optional[str] = None) -> Dict[str, str]:
        item = {"email": email}
        if name:
            item["name"] = name
        return item

    @staticmethod
    def _parse_error(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}: {resp.text}"
        # MailerSend errors look like { "message": "...", "errors": { ... } }
        if isinstance(data, dict):
            if isinstance(data.get("message"), str):
                return f"HTTP {resp.status_code}: {data['message']}"
            if "errors" in data:
                return f"HTTP {resp.status_code}: {json.dumps(data['errors'])}"
        return f"HTTP {resp.status_code}: {resp.text}"

    def send_email(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> SendResult:
        if not self.api_key:
            return SendResult.failed(self.name, "Missing MAILERSEND_API_KEY")

        from_email = from_email or self.default_from
        if not from_email:
            return SendResult.failed(self.name, "Missing from email")

        payload: Dict[str, object] = {
            "from": self._recipient(from_email, from_name or self.default_from_name),
            "to": [self._recipient(to)],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if reply_to:
            payload["reply_to"] = self._recipient(reply_to)
        if attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "filename": a.filename,
                    "disposition": "attachment",
                }
                for a in attachments
            ]

        try:
            with self._client() as client:
                resp = client.post("/email", content=json.dumps(payload))
        except httpx.HTTPError as e:
            return SendResult.failed(self.name, str(e))

        if not 200 <= resp.status_code < 300:
            return SendResult.failed(self.name, self._parse_error(resp))

        # 202 Accepted carries the id in a header
        return SendResult(ok=True, provider=self.name, message_id=resp.headers.get("x-message-id"))
