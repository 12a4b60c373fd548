import logging
from datetime import datetime
from typing import Any, Dict, List

from fastapi import HTTPException, status

from .schema import LabelCreateRequest, ShipmentCreateRequest, ShipmentNotifyRequest, TrackingUpdateRequest
from ..auth.schema import JWTClaims
from ..notifications.service import notify_shipment_update
from ..orders.controller import setting_value
from ..orders.schema import OrderStatus
from ..orders.status_machine import OrderLifecycle, OrderStateError
from ...config import get_settings
from ...database.db import get_database
from ...services.shipping.factory import get_shipstation_client, get_ups_client
from ...services.shipping.shipstation_client import ShipStationError, country_code
from ...services.shipping.ups_client import UPSError
from ...utils.audit import log_event
from ...utils.helperFunctions import generate_unique_id, generate_link_token

logger = logging.getLogger(__name__)

S = OrderStatus

# Orders far enough along to get a label
SHIPPABLE_STATUSES = (
    S.IN_PACKING.value,
    S.PACKED.value,
    S.AWAITING_INVOICE.value,
    S.AWAITING_PAYMENT.value,
    S.READY_TO_SHIP.value,
    S.SHIPPED.value,
)


class ShippingController:
    def __init__(self):
        self.db = get_database()
        self.settings = get_settings()
        self.lifecycle = OrderLifecycle(self.db)

    def _get_shipment(self, shipment_id: str) -> Dict[str, Any]:
        shipment = self.db.shipments.find_one({"id": shipment_id}, {"_id": 0})
        if not shipment:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shipment not found")
        return shipment

    def share_url(self, shipment: Dict[str, Any]) -> str:
        return f"{self.settings.SITE_URL.rstrip('/')}/track/{shipment['share_token']}"

    def _shippable_order(self, order_id: str) -> Dict[str, Any]:
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if order.get("is_internal"):
            raise HTTPException(status_code=400, detail="Internal orders are not shipped to customers")
        if order["status"] not in SHIPPABLE_STATUSES:
            raise HTTPException(status_code=400, detail=f"Order in {order['status']} is not ready for shipping")
        return order

    def create_shipment(self, request: ShipmentCreateRequest, actor: JWTClaims) -> Dict[str, Any]:
        order = self._shippable_order(request.so_id)

        now = datetime.utcnow()
        shipment = {
            "id": generate_unique_id("ship"),
            "so_id": order["id"],
            "carrier": request.carrier,
            "service": request.service,
            "tracking_no": request.tracking_no,
            "tracking_status": None,
            "label_url": request.label_url,
            "shipstation_shipment_id": request.shipstation_shipment_id,
            "shipping_cost": request.shipping_cost,
            "ship_date": request.ship_date or now,
            "share_token": generate_link_token(),
            "voided_at": None,
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
        }
        self.db.shipments.insert_one(dict(shipment))
        log_event(
            "shipment", shipment["id"], "created", None,
            {"so_id": order["id"], "carrier": request.carrier, "tracking_no": request.tracking_no},
            actor.user_id,
        )
        logger.info(f"Shipment {shipment['id']} created for {order['human_uid']} via {request.carrier}")

        order_status = order["status"]
        if request.mark_shipped and order_status != S.SHIPPED.value:
            try:
                result = self.lifecycle.apply_status_change(order["id"], S.SHIPPED, actor)
            except OrderStateError as e:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_detail())
            order_status = result["order"]["status"]

        return {"shipment": shipment, "share_url": self.share_url(shipment), "order_status": order_status}

    # ----- ShipStation labels -----

    def _warehouse(self) -> Dict[str, Any]:
        def value(key: str, default: str = "") -> str:
            return setting_value(self.db, f"shipstation_{key}", default).strip()

        ship_from = {
            "name": value("warehouse_name", "Warehouse"),
            "address_line1": value("warehouse_address1"),
            "address_line2": value("warehouse_address2") or None,
            "city_locality": value("warehouse_city"),
            "state_province": value("warehouse_state"),
            "postal_code": value("warehouse_zip"),
            "country_code": country_code(value("warehouse_country", "US")),
            "phone": value("warehouse_phone") or None,
        }
        if not (ship_from["address_line1"] and ship_from["city_locality"] and ship_from["postal_code"]):
            raise HTTPException(
                status_code=400,
                detail="Warehouse address not configured. Set the ship-from address in shipping settings.",
            )
        return {k: v for k, v in ship_from.items() if v is not None}

    @staticmethod
    def missing_address_fields(address: Dict[str, Any]) -> List[str]:
        missing = []
        if not (address.get("line1") or "").strip():
            missing.append("Shipping Address Line 1")
        if not (address.get("city") or "").strip():
            missing.append("City")
        if not (address.get("postal_code") or "").strip():
            missing.append("ZIP Code")
        if country_code(address.get("country")) in ("US", "CA") and not (address.get("state") or "").strip():
            missing.append("State/Province")
        return missing

    def create_label(self, order_id: str, request: LabelCreateRequest, actor: JWTClaims) -> Dict[str, Any]:
        """Buy a label through ShipStation, record the shipment and mark the order shipped."""
        client = get_shipstation_client()
        if not client.api_key:
            raise HTTPException(status_code=500, detail="ShipStation API key not configured")

        order = self._shippable_order(order_id)
        customer = self.db.customers.find_one({"id": order.get("customer_id")}, {"_id": 0})
        if not customer:
            raise HTTPException(status_code=404, detail="Customer not found for this order")

        address = customer.get("shipping_address") or {}
        missing = self.missing_address_fields(address)
        if missing:
            raise HTTPException(
                status_code=400,
                detail={
                    "message": "Incomplete shipping address",
                    "details": f"Missing required fields: {', '.join(missing)}",
                    "missingFields": missing,
                },
            )

        carrier_code = setting_value(self.db, "shipstation_carrier_code", "ups")
        service_code = setting_value(self.db, "shipstation_service_code", "ups_ground")
        ship_to = {
            "name": customer.get("name") or "Customer",
            "address_line1": address["line1"],
            "address_line2": address.get("line2"),
            "city_locality": address["city"],
            "state_province": address.get("state") or "",
            "postal_code": address["postal_code"],
            "country_code": country_code(address.get("country")),
            "phone": customer.get("phone"),
        }
        package: Dict[str, Any] = {"weight": {"value": request.weight_oz or 16, "unit": "ounce"}}
        if request.dimensions:
            package["dimensions"] = {**request.dimensions.model_dump(), "unit": "inch"}
        label_request = {
            "shipment": {
                "carrier_id": f"se-{carrier_code}",
                "service_code": service_code,
                "ship_to": {k: v for k, v in ship_to.items() if v is not None},
                "ship_from": self._warehouse(),
                "packages": [package],
                "validate_address": "validate_and_clean",
            },
            "label_format": "pdf",
            "label_layout": "4x6",
        }

        logger.info(f"Creating ShipStation label for {order['human_uid']} via {carrier_code}/{service_code}")
        try:
            label = client.create_label(label_request)
        except ShipStationError as e:
            logger.error(f"ShipStation label error for {order['human_uid']}: {e.body or e}")
            raise HTTPException(
                status_code=502,
                detail={"message": "Failed to create label via ShipStation", "details": e.body or str(e)},
            )
        if not label.tracking_number:
            raise HTTPException(status_code=502, detail="Label created but missing tracking number")

        now = datetime.utcnow()
        carrier = carrier_code.upper()
        fields = {
            "carrier": carrier,
            "service": service_code,
            "tracking_no": label.tracking_number,
            "tracking_status": None,
            "label_url": label.label_url,
            "shipstation_shipment_id": label.shipment_id,
            "ship_date": now,
            "voided_at": None,
            "updated_at": now,
        }
        existing = self.db.shipments.find_one({"so_id": order_id, "voided_at": None}, {"_id": 0})
        if existing:
            self.db.shipments.update_one({"id": existing["id"]}, {"$set": fields})
            shipment = {**existing, **fields}
        else:
            shipment = {
                "id": generate_unique_id("ship"),
                "so_id": order_id,
                "shipping_cost": None,
                "share_token": generate_link_token(),
                "created_by": actor.user_id,
                "created_at": now,
                **fields,
            }
            self.db.shipments.insert_one(dict(shipment))
        log_event(
            "shipment", shipment["id"], "label_created",
            {"tracking_no": existing.get("tracking_no")} if existing else None,
            {"so_id": order_id, "carrier": carrier, "tracking_no": label.tracking_number,
             "shipstation_shipment_id": label.shipment_id},
            actor.user_id,
        )

        order_status = order["status"]
        if order_status != S.SHIPPED.value:
            try:
                order_status = self.lifecycle.apply_status_change(order_id, S.SHIPPED, actor)["order"]["status"]
            except OrderStateError as e:
                # keep the label; status rules still apply
                logger.warning(f"Label bought for {order['human_uid']} but order stays {order_status}: {e}")

        return {
            "success": True,
            "tracking_number": label.tracking_number,
            "label_url": label.label_url,
            "shipstation_shipment_id": label.shipment_id,
            "carrier": carrier,
            "shipment": shipment,
            "order_status": order_status,
        }

    # ----- carrier tracking -----

    def refresh_tracking(self) -> Dict[str, Any]:
        """Pull UPS tracking for every live UPS shipment that is not delivered yet.

        Customers get a shipment email whenever the carrier status changes.
        """
        client = get_ups_client()
        if not client.configured:
            raise HTTPException(status_code=500, detail="UPS credentials not configured")
        try:
            token = client.access_token()
        except UPSError as e:
            logger.error(f"UPS OAuth error: {e.body or e}")
            raise HTTPException(status_code=502, detail=str(e))

        shipments = list(self.db.shipments.find(
            {
                "voided_at": None,
                "tracking_no": {"$ne": None},
                "tracking_status": {"$ne": "Delivered"},
                "carrier": {"$regex": "ups", "$options": "i"},
            },
            {"_id": 0},
        ))
        logger.info(f"Found {len(shipments)} UPS shipments to update")

        updates: List[str] = []
        errors: List[Dict[str, str]] = []
        for shipment in shipments:
            tracking_no = shipment["tracking_no"]
            try:
                info = client.track(tracking_no, token)
            except UPSError as e:
                logger.error(f"Error processing {tracking_no}: {e.body or e}")
                errors.append({"tracking_no": tracking_no, "error": str(e)})
                continue
            if info is None:
                logger.info(f"No package data for {tracking_no}")
                continue

            fields = {
                "tracking_status": info.status,
                "tracking_location": info.location,
                "tracking_events": info.events,
                "estimated_delivery": info.estimated_delivery,
                "last_tracking_update": datetime.utcnow(),
            }
            self.db.shipments.update_one({"id": shipment["id"]}, {"$set": fields})
            updates.append(tracking_no)
            if info.status != shipment.get("tracking_status"):
                notify_shipment_update({**shipment, **fields})

        return {
            "success": True,
            "updated": len(updates),
            "errors": len(errors),
            "details": {"updates": updates, "errors": errors},
        }

    def notify_shipment(self, shipment_id: str, request: ShipmentNotifyRequest) -> Dict[str, Any]:
        shipment = self._get_shipment(shipment_id)
        sent = notify_shipment_update(shipment, request.status, request.customer_email)
        return {"success": sent, "message": "Email sent successfully" if sent else "No email sent"}

    def list_shipments(self, so_id: str) -> List[Dict[str, Any]]:
        return list(self.db.shipments.find({"so_id": so_id}, {"_id": 0}).sort("created_at", -1))

    def update_tracking(self, shipment_id: str, request: TrackingUpdateRequest, actor: JWTClaims) -> Dict[str, Any]:
        """Manual tracking entry for labels bought outside ShipStation."""
        shipment = self._get_shipment(shipment_id)
        if shipment.get("voided_at"):
            raise HTTPException(status_code=400, detail="Label has already been voided")
        changes = request.model_dump(exclude_none=True)
        self.db.shipments.update_one({"id": shipment_id}, {"$set": {**changes, "updated_at": datetime.utcnow()}})
        log_event(
            "shipment", shipment_id, "tracking_updated",
            {k: shipment.get(k) for k in changes}, changes, actor.user_id,
        )
        return self._get_shipment(shipment_id)

    def void_label(self, shipment_id: str, actor: JWTClaims) -> Dict[str, Any]:
        """Void the carrier label. A shipped order goes back to ready_to_ship."""
        client = get_shipstation_client()
        if not client.configured:
            raise HTTPException(status_code=500, detail="ShipStation credentials not configured")

        shipment = self._get_shipment(shipment_id)
        if shipment.get("voided_at"):
            raise HTTPException(status_code=400, detail="Label has already been voided")

        now = datetime.utcnow()
        if not shipment.get("shipstation_shipment_id"):
            self.db.shipments.update_one(
                {"id": shipment_id},
                {"$set": {"voided_at": now, "tracking_no": f"VOIDED-{shipment.get('tracking_no')}", "updated_at": now}},
            )
            log_event("shipment", shipment_id, "label_voided", {"tracking_no": shipment.get("tracking_no")},
                      {"voided_at": now, "local_only": True}, actor.user_id)
            return {"success": True, "message": "Shipment marked as voided (no ShipStation ID found)"}

        logger.info(f"Voiding shipment in ShipStation: {shipment['shipstation_shipment_id']}")
        try:
            result = client.void_label(shipment["shipstation_shipment_id"])
        except ShipStationError as e:
            logger.error(f"ShipStation void error: {e.body or e}")
            if e.already_voided:
                self.db.shipments.update_one({"id": shipment_id}, {"$set": {"voided_at": now, "updated_at": now}})
                log_event("shipment", shipment_id, "label_voided", None,
                          {"voided_at": now, "already_voided": True}, actor.user_id)
                return {"success": True, "message": "Label was already voided in ShipStation"}
            raise HTTPException(status_code=500, detail=f"Failed to void label in ShipStation: {e.body or e}")

        self.db.shipments.update_one(
            {"id": shipment_id},
            {"$set": {"voided_at": now, "label_url": None, "updated_at": now}},
        )
        log_event(
            "shipment", shipment_id, "label_voided",
            {"label_url": shipment.get("label_url")},
            {"voided_at": now, "approved": result.approved},
            actor.user_id,
        )
        self.lifecycle.revert_to_ready_to_ship(shipment["so_id"], actor.user_id)

        return {
            "success": True,
            "approved": result.approved,
            "message": "Label voided successfully" if result.approved else "Void request submitted for review",
        }

    def track(self, share_token: str) -> Dict[str, Any]:
        """Public tracking page data for a share link."""
        shipment = self.db.shipments.find_one({"share_token": share_token, "voided_at": None}, {"_id": 0})
        if not shipment:
            raise HTTPException(status_code=404, detail="Tracking link not found")
        order = self.db.sales_orders.find_one({"id": shipment["so_id"]}, {"_id": 0, "human_uid": 1, "status": 1}) or {}
        return {
            "order_number": order.get("human_uid"),
            "order_status": order.get("status"),
            "carrier": shipment.get("carrier"),
            "service": shipment.get("service"),
            "tracking_no": shipment.get("tracking_no"),
            "tracking_status": shipment.get("tracking_status"),
            "tracking_location": shipment.get("tracking_location"),
            "estimated_delivery": shipment.get("estimated_delivery"),
            "tracking_events": shipment.get("tracking_events") or [],
            "ship_date": shipment.get("ship_date"),
        }
