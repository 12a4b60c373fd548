def test_create_and_search_customers(client, operator, as_user):
    for name, email in (("Bloom Skincare", "Orders@Bloom.example.com"), ("Cedar Apothecary", "hi@cedar.example.com")):
        resp = client.post("/customers/", json={"name": name, "email": email}, headers=as_user(operator))
        assert resp.status_code == 200, resp.text

    listed = client.get("/customers/", params={"search": "bloom"}, headers=as_user(operator)).json()
    assert listed["count"] == 1
    assert listed["customers"][0]["email"] == "orders@bloom.example.com"
    assert listed["customers"][0]["terms"] == "Net 30"


def test_duplicate_email_is_rejected(client, customer_record, operator, as_user):
    resp = client.post("/customers/", json={"name": "Other", "email": "BUYER@example.com"}, headers=as_user(operator))
    assert resp.status_code == 400


def test_update_only_touches_sent_fields(client, fake_db, customer_record, operator, as_user):
    resp = client.patch(
        f"/customers/{customer_record['id']}", json={"phone": "+15555550199"}, headers=as_user(operator)
    )
    assert resp.json()["phone"] == "+15555550199"
    assert resp.json()["name"] == "Acme Beauty"
    audit = fake_db.audit_log.find_one({"entity": "customer", "action": "updated"})
    assert audit["before"] == {"phone": "+15555550100"}


def test_customers_are_staff_only(client, customer_record, customer, as_user):
    assert client.get("/customers/", headers=as_user(customer)).status_code == 403
    assert client.get("/customers/cust_missing", headers=as_user(customer)).status_code == 403


def test_unknown_customer(client, operator, as_user):
    assert client.get("/customers/cust_missing", headers=as_user(operator)).status_code == 404
