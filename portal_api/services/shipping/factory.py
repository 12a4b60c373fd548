from __future__ import annotations
from typing import Optional

from ...config import get_settings
from .shipstation_client import ShipStationClient
from .ups_client import UPSClient

_client_singleton: Optional[ShipStationClient] = None


def get_shipstation_client() -> ShipStationClient:
    global _client_singleton
    if _client_singleton is None:
        settings = get_settings()
        _client_singleton = ShipStationClient(
            api_key=settings.SHIPSTATION_API_KEY,
            api_secret=settings.SHIPSTATION_API_SECRET,
            base_url=settings.SHIPSTATION_BASE_URL,
            v2_base_url=settings.SHIPSTATION_V2_BASE_URL,
        )
    return _client_singleton


def set_shipstation_client(client: Optional[ShipStationClient]) -> None:
    global _client_singleton
    _client_singleton = client


_ups_singleton: Optional[UPSClient] = None


def get_ups_client() -> UPSClient:
    global _ups_singleton
    if _ups_singleton is None:
        settings = get_settings()
        _ups_singleton = UPSClient(
            client_id=settings.UPS_CLIENT_ID,
            client_secret=settings.UPS_CLIENT_SECRET,
            base_url=settings.UPS_BASE_URL,
        )
    return _ups_singleton


def set_ups_client(client: Optional[UPSClient]) -> None:
    global _ups_singleton
    _ups_singleton = client
