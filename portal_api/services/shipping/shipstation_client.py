from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

SHIPSTATION_API_BASE = "https://ssapi.shipstation.com"
SHIPSTATION_V2_API_BASE = "https://api.shipstation.com"


class ShipStationError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def already_voided(self) -> bool:
        """ShipStation answers a repeated or stale void with one of these phrases."""
        text = self.body.lower()
        return "already been voided" in text or "cannot be voided" in text


@dataclass
class LabelResult:
    tracking_number: Optional[str]
    label_url: Optional[str]
    shipment_id: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VoidResult:
    approved: bool
    message: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


class ShipStationClient:
    """Minimal ShipStation client.

    Voids go through v1 (basic auth with API key / secret); labels are bought
    through v2, which only takes the API key in an ``api-key`` header.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str],
        api_secret: Optional[str],
        base_url: str = SHIPSTATION_API_BASE,
        v2_base_url: str = SHIPSTATION_V2_API_BASE,
        timeout: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.v2_base_url = v2_base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.api_key or "", self.api_secret or ""),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
            transport=self.transport,
        )

    def void_label(self, shipment_id: str) -> VoidResult:
        try:
            with self._client() as client:
                resp = client.post("/shipments/voidlabel", json={"shipmentId": shipment_id})
        except httpx.HTTPError as e:
            raise ShipStationError(f"ShipStation request failed: {e}") from e

        if resp.status_code >= 400:
            raise ShipStationError(
                f"ShipStation returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
        except ValueError:
            data = {}
        return VoidResult(approved=bool(data.get("approved")), message=data.get("message") or "", raw=data)

    def _v2_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.v2_base_url,
            headers={"api-key": self.api_key or "", "Content-Type": "application/json"},
            timeout=self.timeout,
            transport=self.transport,
        )

    def create_label(self, label_request: Dict[str, Any]) -> LabelResult:
        """Buy a label in one call (v2 creates the shipment and the label together)."""
        try:
            with self._v2_client() as client:
                resp = client.post("/v2/labels", json=label_request)
        except httpx.HTTPError as e:
            raise ShipStationError(f"ShipStation request failed: {e}") from e

        if resp.status_code >= 400:
            raise ShipStationError(
                f"ShipStation returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=_error_details(resp),
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ShipStationError("ShipStation returned an unreadable label response", status_code=resp.status_code, body=resp.text) from e
        download = data.get("label_download") or {}
        return LabelResult(
            tracking_number=data.get("tracking_number"),
            label_url=download.get("pdf") or download.get("href"),
            shipment_id=data.get("shipment_id"),
            raw=data,
        )


def _error_details(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict):
        if data.get("message"):
            return data["message"]
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            return ", ".join(e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors)
    return resp.text


_THREE_LETTER = {"usa": "US", "can": "CA", "mex": "MX", "gbr": "GB", "aus": "AU", "deu": "DE", "fra": "FR"}
_COUNTRY_NAMES = {
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "u.s.a.": "US",
    "u.s.": "US",
    "america": "US",
    "canada": "CA",
    "mexico": "MX",
    "united kingdom": "GB",
    "great britain": "GB",
    "england": "GB",
    "australia": "AU",
    "germany": "DE",
    "france": "FR",
    "italy": "IT",
    "spain": "ES",
    "netherlands": "NL",
    "belgium": "BE",
    "switzerland": "CH",
    "austria": "AT",
    "japan": "JP",
    "china": "CN",
    "india": "IN",
    "brazil": "BR",
    "ireland": "IE",
    "new zealand": "NZ",
    "puerto rico": "PR",
    "virgin islands": "VI",
    "guam": "GU",
}


def country_code(country: Optional[str]) -> str:
    """Two-letter ISO code for a stored country name or code. Unknown values ship as US."""
    if not country or not country.strip():
        return "US"
    value = country.strip()
    if len(value) == 2:
        return value.upper()
    if len(value) == 3 and value.lower() in _THREE_LETTER:
        return _THREE_LETTER[value.lower()]
    return _COUNTRY_NAMES.get(value.lower(), "US")
