import json

import pytest

from portal_api.services.shipping.factory import set_shipstation_client
from portal_api.services.shipping.shipstation_client import ShipStationClient, country_code


@pytest.fixture
def shipment_for(client, operator, as_user):
    def _create(order, **fields):
        body = {"so_id": order["id"], "carrier": "UPS", "service": "Ground", "tracking_no": "1Z999", **fields}
        resp = client.post("/shipping/shipments", json=body, headers=as_user(operator))
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _create


def test_create_shipment_and_mark_shipped(fake_db, make_order, shipment_for, outbox):
    order = make_order("ready_to_ship")

    result = shipment_for(order, mark_shipped=True, shipping_cost=18.5)

    assert result["order_status"] == "shipped"
    assert result["share_url"].endswith(f"/track/{result['shipment']['share_token']}")
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "shipped"
    assert outbox[-1]["subject"] == "Your Order SO-0001 Has Shipped!"
    assert "1Z999" in (outbox[-1]["text"] or outbox[-1]["html"])


def test_shipment_rules(client, make_order, operator, customer, as_user):
    queued = make_order("in_queue")
    internal = make_order("packed", is_internal=True, customer_id=None)
    body = {"carrier": "UPS", "tracking_no": "1Z1"}

    early = client.post("/shipping/shipments", json={**body, "so_id": queued["id"]}, headers=as_user(operator))
    assert early.status_code == 400
    inside = client.post("/shipping/shipments", json={**body, "so_id": internal["id"]}, headers=as_user(operator))
    assert inside.json()["detail"] == "Internal orders are not shipped to customers"
    missing = client.post("/shipping/shipments", json={**body, "so_id": "so_nope"}, headers=as_user(operator))
    assert missing.status_code == 404
    as_customer = client.post("/shipping/shipments", json={**body, "so_id": queued["id"]}, headers=as_user(customer))
    assert as_customer.status_code == 403


def test_early_label_leaves_status_alone(client, make_order, shipment_for, operator, as_user):
    order = make_order("awaiting_payment")
    assert shipment_for(order)["order_status"] == "awaiting_payment"

    forced = client.post(
        "/shipping/shipments",
        json={"so_id": order["id"], "carrier": "UPS", "tracking_no": "1Z2", "mark_shipped": True},
        headers=as_user(operator),
    )
    assert forced.status_code == 409
    assert forced.json()["detail"]["message"] == "Override note required"


def test_public_tracking_link(client, make_order, shipment_for, operator, as_user):
    order = make_order("ready_to_ship")
    created = shipment_for(order)
    token = created["shipment"]["share_token"]

    client.patch(
        f"/shipping/shipments/{created['shipment']['id']}/tracking",
        json={"tracking_no": "1Z999", "tracking_status": "in_transit"},
        headers=as_user(operator),
    )
    page = client.get(f"/shipping/track/{token}")

    assert page.status_code == 200
    assert page.json()["order_number"] == "SO-0001"
    assert page.json()["tracking_status"] == "in_transit"
    assert client.get("/shipping/track/not-a-token").status_code == 404


def test_void_label_reverts_shipped_order(client, fake_db, make_order, shipment_for, operator, as_user, shipstation, outbox):
    order = make_order("ready_to_ship")
    created = shipment_for(order, shipstation_shipment_id="987654", label_url="https://labels.example.com/1.pdf", mark_shipped=True)
    sent_before = len(outbox)

    resp = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))

    assert resp.json() == {"success": True, "approved": True, "message": "Label voided successfully"}
    request = shipstation.requests[0]
    assert request.url.path == "/shipments/voidlabel"
    assert json.loads(request.content) == {"shipmentId": "987654"}
    shipment = fake_db.shipments.find_one({"id": created["shipment"]["id"]})
    assert shipment["voided_at"] is not None and shipment["label_url"] is None
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "ready_to_ship"
    assert len(outbox) == sent_before
    # voided links stop resolving
    assert client.get(f"/shipping/track/{created['shipment']['share_token']}").status_code == 404


def test_void_pending_review(client, make_order, shipment_for, operator, as_user, shipstation):
    shipstation.response = {"approved": False, "message": "queued"}
    created = shipment_for(make_order("ready_to_ship"), shipstation_shipment_id="111")
    resp = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))
    assert resp.json()["message"] == "Void request submitted for review"


def test_void_without_shipstation_id_is_local(client, fake_db, make_order, shipment_for, operator, as_user, shipstation):
    created = shipment_for(make_order("ready_to_ship"))
    resp = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))

    assert resp.json()["message"] == "Shipment marked as voided (no ShipStation ID found)"
    assert fake_db.shipments.find_one({"id": created["shipment"]["id"]})["tracking_no"] == "VOIDED-1Z999"
    assert shipstation.requests == []

    again = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))
    assert again.status_code == 400
    assert again.json()["detail"] == "Label has already been voided"


def test_void_already_voided_upstream(client, fake_db, make_order, shipment_for, operator, as_user, shipstation):
    shipstation.status_code = 400
    shipstation.text = "This label has already been voided."
    created = shipment_for(make_order("ready_to_ship"), shipstation_shipment_id="222")

    resp = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))

    assert resp.json() == {"success": True, "message": "Label was already voided in ShipStation"}
    assert fake_db.shipments.find_one({"id": created["shipment"]["id"]})["voided_at"] is not None


def test_void_upstream_failure(client, make_order, shipment_for, operator, as_user, shipstation):
    shipstation.status_code = 500
    shipstation.text = "internal error"
    created = shipment_for(make_order("ready_to_ship"), shipstation_shipment_id="333")

    resp = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to void label in ShipStation: internal error"


def test_void_requires_credentials(client, make_order, shipment_for, operator, as_user):
    created = shipment_for(make_order("ready_to_ship"))
    set_shipstation_client(ShipStationClient(api_key=None, api_secret=None))

    resp = client.post(f"/shipping/shipments/{created['shipment']['id']}/void", headers=as_user(operator))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "ShipStation credentials not configured"


WAREHOUSE = {
    "shipstation_warehouse_name": "Acme Labs",
    "shipstation_warehouse_address1": "100 Factory Rd",
    "shipstation_warehouse_city": "Dallas",
    "shipstation_warehouse_state": "TX",
    "shipstation_warehouse_zip": "75201",
}


@pytest.fixture
def label_ready(fake_db, customer_record):
    for key, value in WAREHOUSE.items():
        fake_db.settings.insert_one({"key": key, "value": value})
    fake_db.customers.update_one(
        {"id": customer_record["id"]},
        {"$set": {"shipping_address": {"line1": "1 Main St", "city": "Austin", "state": "TX", "postal_code": "73301"}}},
    )


def test_create_label_records_shipment_and_ships(client, fake_db, make_order, operator, as_user, shipstation, outbox, label_ready):
    order = make_order("ready_to_ship")
    shipstation.response = {
        "tracking_number": "1ZLABEL",
        "shipment_id": "se-123",
        "label_download": {"pdf": "https://labels.example.com/se-123.pdf"},
    }

    resp = client.post(
        f"/shipping/orders/{order['id']}/label",
        json={"weight_oz": 24, "dimensions": {"length": 10, "width": 8, "height": 4}},
        headers=as_user(operator),
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["tracking_number"] == "1ZLABEL"
    assert body["label_url"] == "https://labels.example.com/se-123.pdf"
    assert body["order_status"] == "shipped"
    request = shipstation.requests[0]
    assert request.url.path == "/v2/labels"
    assert request.headers["api-key"] == "ss-key"
    sent = json.loads(request.content)
    assert sent["shipment"]["carrier_id"] == "se-ups"
    assert sent["shipment"]["service_code"] == "ups_ground"
    assert sent["shipment"]["packages"][0]["weight"] == {"value": 24, "unit": "ounce"}
    assert sent["shipment"]["packages"][0]["dimensions"]["unit"] == "inch"
    assert sent["shipment"]["ship_to"]["country_code"] == "US"
    assert sent["shipment"]["ship_from"]["city_locality"] == "Dallas"
    shipment = fake_db.shipments.find_one({"so_id": order["id"]})
    assert (shipment["carrier"], shipment["tracking_no"]) == ("UPS", "1ZLABEL")
    assert shipment["shipstation_shipment_id"] == "se-123"
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "shipped"
    assert outbox[-1]["subject"] == "Your Order SO-0001 Has Shipped!"


def test_create_label_reuses_the_open_shipment(client, fake_db, make_order, shipment_for, operator, as_user, shipstation, label_ready):
    order = make_order("ready_to_ship")
    created = shipment_for(order)
    shipstation.response = {"tracking_number": "1ZNEW", "shipment_id": "se-9", "label_download": {"href": "https://l/9"}}

    client.post(f"/shipping/orders/{order['id']}/label", json={}, headers=as_user(operator))

    shipments = list(fake_db.shipments.find({"so_id": order["id"]}))
    assert len(shipments) == 1
    assert shipments[0]["id"] == created["shipment"]["id"]
    assert shipments[0]["tracking_no"] == "1ZNEW"
    assert json.loads(shipstation.requests[0].content)["shipment"]["packages"][0]["weight"]["value"] == 16


def test_create_label_needs_a_full_address(client, fake_db, make_order, operator, as_user, shipstation, label_ready, customer_record):
    fake_db.customers.update_one({"id": customer_record["id"]}, {"$set": {"shipping_address": {"line1": "1 Main St"}}})
    order = make_order("ready_to_ship")

    resp = client.post(f"/shipping/orders/{order['id']}/label", json={}, headers=as_user(operator))

    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["message"] == "Incomplete shipping address"
    assert detail["missingFields"] == ["City", "ZIP Code", "State/Province"]
    assert shipstation.requests == []


def test_create_label_needs_a_warehouse(client, fake_db, make_order, operator, as_user, shipstation, customer_record):
    fake_db.customers.update_one(
        {"id": customer_record["id"]},
        {"$set": {"shipping_address": {"line1": "1 Main St", "city": "Austin", "state": "TX", "postal_code": "73301"}}},
    )
    order = make_order("ready_to_ship")

    resp = client.post(f"/shipping/orders/{order['id']}/label", json={}, headers=as_user(operator))

    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Warehouse address not configured")
    assert shipstation.requests == []


def test_create_label_upstream_error(client, fake_db, make_order, operator, as_user, shipstation, label_ready):
    shipstation.status_code = 400
    shipstation.response = {"errors": [{"message": "Invalid postal code"}]}
    order = make_order("ready_to_ship")

    resp = client.post(f"/shipping/orders/{order['id']}/label", json={}, headers=as_user(operator))

    assert resp.status_code == 502
    assert resp.json()["detail"] == {"message": "Failed to create label via ShipStation", "details": "Invalid postal code"}
    assert fake_db.shipments.count_documents({"so_id": order["id"]}) == 0
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "ready_to_ship"


def test_create_label_refusals(client, make_order, operator, customer, as_user, label_ready):
    queued = make_order("in_queue")
    assert client.post(f"/shipping/orders/{queued['id']}/label", json={}, headers=as_user(operator)).status_code == 400
    ready = make_order("ready_to_ship")
    assert client.post(f"/shipping/orders/{ready['id']}/label", json={}, headers=as_user(customer)).status_code == 403
    bad_weight = client.post(f"/shipping/orders/{ready['id']}/label", json={"weight_oz": 0}, headers=as_user(operator))
    assert bad_weight.status_code == 422


@pytest.mark.parametrize("stored, expected", [
    (None, "US"),
    ("", "US"),
    ("ca", "CA"),
    ("USA", "US"),
    ("United Kingdom", "GB"),
    ("Atlantis", "US"),
])
def test_country_code(stored, expected):
    assert country_code(stored) == expected


def delivered_in_austin():
    return [{
        "date": "20260305",
        "time": "141500",
        "status": {"description": "Delivered"},
        "location": {"address": {"city": "Austin", "stateProvince": "TX", "country": "US"}},
    }]


def test_refresh_tracking_updates_ups_shipments(client, fake_db, make_order, shipment_for, operator, as_user, ups, outbox):
    delivered = shipment_for(make_order("shipped"))
    shipment_for(make_order("shipped"), carrier="FedEx", tracking_no="7489")
    shipment_for(make_order("shipped"), tracking_no="1ZUNKNOWN")
    ups.tracking["1Z999"] = delivered_in_austin()
    ups.delivery_dates["1Z999"] = "20260305"

    resp = client.post("/shipping/tracking/refresh", headers=as_user(operator))

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert (body["updated"], body["errors"]) == (1, 1)
    assert body["details"]["updates"] == ["1Z999"]
    assert body["details"]["errors"][0]["tracking_no"] == "1ZUNKNOWN"
    stored = fake_db.shipments.find_one({"id": delivered["shipment"]["id"]})
    assert stored["tracking_status"] == "Delivered"
    assert stored["tracking_location"] == "Austin, TX"
    assert stored["tracking_events"][0]["location"] == "Austin, TX, US"
    assert stored["estimated_delivery"].strftime("%Y-%m-%d") == "2026-03-05"
    assert outbox[-1]["subject"] == "Your Order SO-0001 Has Been Delivered!"
    tracked = [r.url.path.rsplit("/", 1)[-1] for r in ups.requests if "/track/" in r.url.path]
    assert "7489" not in tracked
    assert ups.requests[1].headers["Authorization"] == "Bearer ups-token"

    sent_before = len(outbox)
    again = client.post("/shipping/tracking/refresh", headers=as_user(operator)).json()
    assert again["updated"] == 0
    assert len(outbox) == sent_before


def test_refresh_tracking_access(client, operator, customer, as_user):
    assert client.post("/shipping/tracking/refresh").status_code == 401
    assert client.post("/shipping/tracking/refresh", headers=as_user(customer)).status_code == 401
    by_secret = client.post("/shipping/tracking/refresh", headers={"X-Webhook-Secret": "internal-test-secret"})
    assert by_secret.status_code == 200
    assert by_secret.json()["updated"] == 0


def test_notify_shipment_to_custom_address(client, make_order, shipment_for, operator, customer, as_user, outbox):
    created = shipment_for(make_order("shipped"))
    path = f"/shipping/shipments/{created['shipment']['id']}/notify"

    resp = client.post(path, json={"status": "Out for delivery", "customer_email": "dock@acme.example"}, headers=as_user(operator))

    assert resp.json() == {"success": True, "message": "Email sent successfully"}
    assert outbox[-1]["to"] == "dock@acme.example"
    assert outbox[-1]["subject"] == "Shipment Update for Order SO-0001"
    assert "Out for delivery" in outbox[-1]["text"]
    assert client.post(path, json={}, headers=as_user(customer)).status_code == 403


def test_scheduled_task_refreshes_tracking(make_order, shipment_for, ups):
    from portal_api.celery_app import refresh_tracking

    shipment_for(make_order("shipped"))
    ups.tracking["1Z999"] = delivered_in_austin()

    result = refresh_tracking.apply().get()
    assert result["updated"] == 1
