from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import httpx

TEXTBELT_API_BASE = "https://textbelt.com"


class TextbeltError(RuntimeError):
    """Raised when Textbelt cannot be reached or rejects a request."""


@dataclass
class SmsResult:
    success: bool
    text_id: Optional[str] = None
    quota_remaining: Optional[int] = None
    error: Optional[str] = None


class TextbeltProvider:
    """Thin Textbelt client: send a text and read the remaining quota.

    Unlike the email providers, failures raise ``TextbeltError`` because the
    SMS endpoints report them to the caller as a 500.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str = TEXTBELT_API_BASE,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _require_key(self) -> str:
        if not self.api_key:
            raise TextbeltError("TEXTBELT_API_KEY not configured")
        return self.api_key

    def send(self, phone: str, message: str) -> SmsResult:
        key = self._require_key()
        try:
            with self._client() as client:
                resp = client.post("/text", json={"phone": phone, "message": message, "key": key})
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TextbeltError(f"SMS failed: {e}") from e

        if not data.get("success"):
            raise TextbeltError(f"SMS failed: {data.get('error') or 'Unknown error'}")

        return SmsResult(
            success=True,
            text_id=str(data["textId"]) if data.get("textId") is not None else None,
            quota_remaining=data.get("quotaRemaining"),
        )

    def quota(self) -> SmsResult:
        key = self._require_key()
        try:
            with self._client() as client:
                resp = client.get(f"/quota/{key}")
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TextbeltError(f"Quota lookup failed: {e}") from e

        return SmsResult(
            success=bool(data.get("success")),
            quota_remaining=data.get("quotaRemaining"),
            error=data.get("error"),
        )
