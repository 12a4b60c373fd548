from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

UPS_API_BASE = "https://onlinetools.ups.com"


class UPSError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class TrackingInfo:
    status: str
    location: Optional[str]
    estimated_delivery: Optional[datetime]
    events: List[Dict[str, Any]] = field(default_factory=list)


def _place(address: Optional[Dict[str, Any]], with_country: bool = False) -> Optional[str]:
    if not address:
        return None
    parts = [address.get("city") or "", address.get("stateProvince") or ""]
    if with_country:
        parts.append(address.get("country") or "")
    return ", ".join(parts)


def _delivery_date(raw: Optional[str]) -> Optional[datetime]:
    # UPS dates come as YYYYMMDD
    try:
        return datetime.strptime(raw, "%Y%m%d") if raw else None
    except ValueError:
        return None


class UPSClient:
    """UPS Track API over OAuth client credentials."""

    def __init__(
        self,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        base_url: str = UPS_API_BASE,
        timeout: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def access_token(self) -> str:
        try:
            with self._client() as client:
                resp = client.post(
                    "/security/v1/oauth/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id or "", self.client_secret or ""),
                )
        except httpx.HTTPError as e:
            raise UPSError(f"UPS OAuth request failed: {e}") from e
        if resp.status_code >= 400:
            raise UPSError(f"Failed to get UPS access token: {resp.status_code}", resp.status_code, resp.text)
        return resp.json()["access_token"]

    def track(self, tracking_number: str, token: str) -> Optional[TrackingInfo]:
        """Latest activity for a package, or None when UPS has no package data yet."""
        headers = {
            "Authorization": f"Bearer {token}",
            "transId": uuid.uuid4().hex,
            "transactionSrc": "order-portal",
        }
        try:
            with self._client() as client:
                resp = client.get(f"/api/track/v1/details/{tracking_number}", headers=headers)
        except httpx.HTTPError as e:
            raise UPSError(f"UPS tracking request failed: {e}") from e
        if resp.status_code >= 400:
            raise UPSError(f"Failed to get tracking info: {resp.status_code}", resp.status_code, resp.text)

        shipments = (resp.json().get("trackResponse") or {}).get("shipment") or []
        packages = (shipments[0].get("package") or []) if shipments else []
        if not packages or not packages[0].get("activity"):
            return None
        package = packages[0]
        activity = package["activity"]
        latest = activity[0]
        events = [
            {
                "date": a.get("date"),
                "time": a.get("time"),
                "status": (a.get("status") or {}).get("description"),
                "location": _place((a.get("location") or {}).get("address"), with_country=True),
            }
            for a in activity
        ]
        delivery = package.get("deliveryDate") or []
        return TrackingInfo(
            status=(latest.get("status") or {}).get("description") or "Unknown",
            location=_place((latest.get("location") or {}).get("address")),
            estimated_delivery=_delivery_date(delivery[0].get("date") if delivery else None),
            events=events,
        )
