"""
Test harness: an in-memory stand-in for the Mongo database, installed on
``DatabaseConnection`` before any portal module runs ``get_database()``,
plus fake email/SMS/ShipStation transports and token helpers.
"""
import copy
import itertools
import os
import re
from types import SimpleNamespace

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("EMAIL_PROVIDER", "none")
os.environ.setdefault("INTERNAL_WEBHOOK_SECRET", "internal-test-secret")
os.environ.setdefault("TEXTBELT_API_KEY", "textbelt-test-key")
os.environ.setdefault("SHIPSTATION_API_KEY", "ss-key")
os.environ.setdefault("SHIPSTATION_API_SECRET", "ss-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_portal")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_portal")
os.environ.setdefault("COMPANY_EMAIL", "admin@example.com")

import httpx
import pytest
from pymongo.errors import DuplicateKeyError

from portal_api.database.db import DatabaseConnection


# ----- fake mongo -----

_MISSING = object()


def _get(doc, key):
    value = doc
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _compare(value, op, arg):
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$ne":
        return not _equals(value, arg)
    if op == "$in":
        return any(_equals(value, a) for a in arg)
    if op == "$nin":
        return not any(_equals(value, a) for a in arg)
    if value is _MISSING or value is None:
        return False
    if op == "$lt":
        return value < arg
    if op == "$lte":
        return value <= arg
    if op == "$gt":
        return value > arg
    if op == "$gte":
        return value >= arg
    raise NotImplementedError(op)


def _equals(value, arg):
    if arg is None:
        return value is _MISSING or value is None
    if isinstance(arg, re.Pattern):
        return isinstance(value, str) and bool(arg.search(value))
    if isinstance(value, list) and not isinstance(arg, list):
        return arg in value
    return value == arg


def matches(doc, query):
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
            continue
        value = _get(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if "$regex" in cond:
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not (isinstance(value, str) and re.search(cond["$regex"], value, flags)):
                    return False
                continue
            if not all(_compare(value, op, arg) for op, arg in cond.items()):
                return False
        elif not _equals(value, cond):
            return False
    return True


def project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    include = {k for k, v in projection.items() if v and k != "_id"}
    if include:
        out = {k: doc[k] for k in include if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = doc["_id"]
        return out
    for key, v in projection.items():
        if not v:
            doc.pop(key, None)
    return doc


def _sort_key(value):
    # None and missing sort first, as in Mongo
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


class FakeCursor:
    def __init__(self, docs, projection=None):
        self._docs = docs
        self._projection = projection
        self._skip = 0
        self._limit = 0

    def sort(self, key, direction=1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(_get(d, field)), reverse=order < 0)
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _window(self):
        docs = self._docs[self._skip:]
        return docs[:self._limit] if self._limit else docs

    def __iter__(self):
        return iter([project(d, self._projection) for d in self._window()])


class FakeCollection:
    _ids = itertools.count(1)

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique = []

    def _check_unique(self, doc, ignore=None):
        for field in self.unique:
            value = _get(doc, field)
            if value is _MISSING or value is None:
                continue
            for other in self.docs:
                if other is not ignore and _get(other, field) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key {self.name}.{field}: {value}")

    def create_index(self, keys, unique=False, **kwargs):
        if unique and isinstance(keys, str) and keys not in self.unique:
            self.unique.append(keys)
        return keys if isinstance(keys, str) else "_".join(k for k, _ in keys)

    def index_information(self):
        return {name: {} for name in self.unique}

    def insert_one(self, doc):
        doc.setdefault("_id", next(self._ids))
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    def insert_many(self, docs):
        return SimpleNamespace(inserted_ids=[self.insert_one(d).inserted_id for d in docs])

    def find(self, query=None, projection=None):
        return FakeCursor([d for d in self.docs if matches(d, query)], projection)

    def find_one(self, query=None, projection=None, sort=None):
        cursor = self.find(query, projection)
        if sort:
            cursor.sort(sort)
        for doc in cursor.limit(1):
            return doc
        return None

    def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))

    def _apply(self, doc, update, inserting=False):
        for key, value in update.get("$set", {}).items():
            doc[key] = copy.deepcopy(value)
        if inserting:
            for key, value in update.get("$setOnInsert", {}).items():
                doc[key] = copy.deepcopy(value)
        for key, value in update.get("$inc", {}).items():
            doc[key] = (doc.get(key) or 0) + value
        for key, value in update.get("$push", {}).items():
            doc.setdefault(key, []).append(copy.deepcopy(value))
        for key in update.get("$unset", {}):
            doc.pop(key, None)

    def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                self._apply(doc, update)
                self._check_unique(doc, ignore=doc)
                return SimpleNamespace(matched_count=1, modified_count=int(doc != before), upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
            self._apply(doc, update, inserting=True)
            inserted = self.insert_one(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=inserted.inserted_id)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    def update_many(self, query, update):
        hit = [d for d in self.docs if matches(d, query)]
        for doc in hit:
            self._apply(doc, update)
        return SimpleNamespace(matched_count=len(hit), modified_count=len(hit))

    def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def delete_many(self, query):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.docs))


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def command(self, name, *args, **kwargs):
        return {"ok": 1.0}

    def clear(self):
        # in place: modules hold references to collections
        for collection in self._collections.values():
            collection.docs.clear()


FAKE_DB = FakeDatabase()
DatabaseConnection._db = FAKE_DB
DatabaseConnection._create_indexes(SimpleNamespace(_db=FAKE_DB))


# ----- outbound transports -----

class TextbeltStub:
    """Textbelt stand-in for httpx.MockTransport; records every request."""

    def __init__(self):
        self.requests = []
        self.send_response = {"success": True, "textId": "12345", "quotaRemaining": 420}
        self.quota_response = {"success": True, "quotaRemaining": 420}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.startswith("/quota/"):
            return httpx.Response(200, json=self.quota_response)
        return httpx.Response(200, json=self.send_response)

    @property
    def sent(self):
        import json
        return [json.loads(r.content) for r in self.requests if r.url.path == "/text"]


class ShipStationStub:
    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.response = {"approved": True, "message": "Label voided successfully"}
        self.text = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.response)


class UPSStub:
    """UPS OAuth + Track API stand-in; ``tracking`` maps tracking numbers to activity lists."""

    def __init__(self):
        self.requests = []
        self.tracking = {}
        self.delivery_dates = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/security/v1/oauth/token":
            return httpx.Response(200, json={"access_token": "ups-token", "expires_in": "14399"})
        number = request.url.path.rsplit("/", 1)[-1]
        if number not in self.tracking:
            return httpx.Response(404, json={"response": {"errors": [{"code": "TW0001", "message": "Tracking number not found"}]}})
        package = {"trackingNumber": number, "activity": self.tracking[number]}
        if number in self.delivery_dates:
            package["deliveryDate"] = [{"type": "SDD", "date": self.delivery_dates[number]}]
        return httpx.Response(200, json={"trackResponse": {"shipment": [{"package": [package]}]}})


@pytest.fixture(autouse=True)
def fake_db():
    FAKE_DB.clear()
    yield FAKE_DB


@pytest.fixture(autouse=True)
def outbox():
    from portal_api.services.email.factory import set_email_provider
    from portal_api.services.email.null_provider import NullProvider

    provider = NullProvider()
    set_email_provider(provider)
    yield provider.outbox
    set_email_provider(None)


@pytest.fixture(autouse=True)
def textbelt():
    from portal_api.services.sms.factory import set_sms_provider
    from portal_api.services.sms.textbelt_provider import TextbeltProvider

    stub = TextbeltStub()
    set_sms_provider(TextbeltProvider(api_key="textbelt-test-key", transport=httpx.MockTransport(stub)))
    yield stub
    set_sms_provider(None)


@pytest.fixture(autouse=True)
def shipstation():
    from portal_api.services.shipping.factory import set_shipstation_client
    from portal_api.services.shipping.shipstation_client import ShipStationClient

    stub = ShipStationStub()
    set_shipstation_client(
        ShipStationClient(api_key="ss-key", api_secret="ss-secret", transport=httpx.MockTransport(stub))
    )
    yield stub
    set_shipstation_client(None)


@pytest.fixture(autouse=True)
def ups():
    from portal_api.services.shipping.factory import set_ups_client
    from portal_api.services.shipping.ups_client import UPSClient

    stub = UPSStub()
    set_ups_client(UPSClient(client_id="ups-id", client_secret="ups-secret", transport=httpx.MockTransport(stub)))
    yield stub
    set_ups_client(None)


# ----- identities -----

def make_claims(role, user_id, role_entity_id=None, email=None):
    import time
    from portal_api.src.auth.schema import JWTClaims

    now = int(time.time())
    return JWTClaims(
        user_id=user_id,
        role_entity_id=role_entity_id or user_id,
        role=role,
        email=email or f"{user_id}@example.com",
        exp=now + 3600,
        iat=now,
        jti=f"jti-{user_id}",
    )


def bearer(claims):
    from portal_api.middlewares.jwt_auth import JWTAuthController

    token = JWTAuthController().create_access_token(claims.user_id, claims.role_entity_id, claims.role, claims.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin():
    return make_claims("admin", "user_admin")


@pytest.fixture
def operator():
    return make_claims("operator", "user_operator")


@pytest.fixture
def customer_record(fake_db):
    from datetime import datetime

    doc = {
        "id": "cust_acme",
        "name": "Acme Beauty",
        "contact_name": "Jordan Lee",
        "email": "buyer@example.com",
        "phone": "+15555550100",
        "terms": "Net 30",
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow(),
    }
    fake_db.customers.insert_one(dict(doc))
    return doc


@pytest.fixture
def customer(customer_record):
    return make_claims("customer", "user_customer", role_entity_id=customer_record["id"], email=customer_record["email"])


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from portal_api.main import app

    return TestClient(app)


@pytest.fixture
def sku(fake_db):
    from datetime import datetime

    doc = {
        "id": "sku_serum",
        "code": "SERUM30",
        "description": "Vitamin C Serum 30ml",
        "price_per_kit": 120.0,
        "price_per_piece": 14.0,
        "label_required": False,
        "is_bundle": False,
        "pack_size": None,
        "batch_prefix": "VCS",
        "active": True,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow(),
    }
    fake_db.skus.insert_one(dict(doc))
    return doc


@pytest.fixture
def make_order(fake_db, customer_record, sku):
    """Insert an order (and one kit line) directly, bypassing the create flow."""
    from datetime import datetime
    from itertools import count

    seq = count(1)

    def _make(status="draft", **fields):
        n = next(seq)
        now = datetime.utcnow()
        order = {
            "id": f"so_test{n}",
            "human_uid": f"SO-{n:04d}",
            "uid_prefix": "SO",
            "uid_seq": n,
            "customer_id": customer_record["id"],
            "status": status,
            "is_internal": False,
            "label_required": False,
            "subtotal": 1200.0,
            "deposit_required": True,
            "deposit_amount": 600.0,
            "deposit_status": "unpaid",
            "quote_expiration_days": 30,
            "quote_expires_at": None,
            "quote_link_token": f"token-{n}",
            "consolidated_total": None,
            "parent_order_id": None,
            "manual_payment_notes": None,
            "created_at": now,
            "updated_at": now,
        }
        order.update(fields)
        fake_db.sales_orders.insert_one(dict(order))
        fake_db.sales_order_lines.insert_one({
            "id": f"line_test{n}",
            "so_id": order["id"],
            "sku_id": sku["id"],
            "sku_code": sku["code"],
            "sell_mode": "kit",
            "qty_entered": 10,
            "bottle_qty": 100,
            "unit_price": 120.0,
            "line_subtotal": 1200.0,
            "created_at": now,
        })
        return order

    return _make


@pytest.fixture
def as_user():
    """Authorization headers for a set of claims."""
    return bearer
