import base64
import hashlib
import hmac
import json
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import app
from app.services.container import Services
from app.services.issuance_service import IssuanceService
from app.services.redemption_service import RedemptionService
from conftest import make_policy


def line_body(*events: dict) -> dict:
    return {"destination": "Uxxxx", "events": list(events)}


def text_event(text: str = "クーポン", user_id: str = "U1", message_id: str = "m1") -> dict:
    return {
        "type": "message",
        "replyToken": f"rt-{message_id}",
        "source": {"type": "user", "userId": user_id},
        "message": {"type": "text", "id": message_id, "text": text},
    }


def sign(body: bytes, secret: str) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


@pytest.fixture
def services(store, notifier, clock) -> Services:
    policy = make_policy(staff_pass="1234")
    return Services(
        store=store,
        notifier=notifier,
        issuance=IssuanceService(store, notifier, policy, clock=clock),
        redemption=RedemptionService(store, policy, clock=clock),
    )


@pytest.fixture
def client(services) -> Generator[TestClient, None, None]:
    previous = (app.state.services, app.state.settings)
    app.state.services = services
    app.state.settings = Settings(ENV="development", STORE_BACKEND="memory", LINE_CHANNEL_SECRET="")
    yield TestClient(app)
    app.state.services, app.state.settings = previous


def test_health(client) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "store": "connected"}


def test_webhook_issues_coupon_and_replies(client, notifier, store) -> None:
    resp = client.post("/webhook", json=line_body(text_event()))

    assert resp.status_code == 200
    [result] = resp.json()
    assert result["event_id"] == "m1"
    assert result["outcome"] == "issued"
    coupon = store.find_by_code(result["code"])
    assert coupon.owner_id == "U1"
    assert notifier.coupons == [("U1", coupon, "rt-m1")]


def test_webhook_redelivery_is_deduplicated(client, store) -> None:
    body = line_body(text_event())
    client.post("/api/webhooks/line", json=body)
    resp = client.post("/api/webhooks/line", json=body)

    assert resp.json()[0]["outcome"] == "duplicate"
    assert len(store._scan_owner("U1")) == 1


def test_webhook_skips_non_text_events(client, notifier) -> None:
    follow = {"type": "follow", "replyToken": "rt", "source": {"type": "user", "userId": "U1"}}
    sticker = {
        "type": "message",
        "replyToken": "rt2",
        "source": {"type": "user", "userId": "U1"},
        "message": {"type": "sticker", "id": "m9"},
    }
    resp = client.post("/webhook", json=line_body(follow, sticker, text_event(text="hello", message_id="m2")))

    assert resp.status_code == 200
    assert resp.json() == [{"event_id": "m2", "outcome": "ignored", "code": None}]
    assert notifier.coupons == []


def test_webhook_signature_required_when_secret_set(client) -> None:
    app.state.settings = Settings(STORE_BACKEND="memory", LINE_CHANNEL_SECRET="secret")
    body = json.dumps(line_body(text_event())).encode()

    bad = client.post("/webhook", content=body, headers={"x-line-signature": "nope"})
    assert bad.status_code == 401

    good = client.post(
        "/webhook",
        content=body,
        headers={"x-line-signature": sign(body, "secret"), "content-type": "application/json"},
    )
    assert good.status_code == 200
    assert good.json()[0]["outcome"] == "issued"


@pytest.mark.parametrize(
    "env, backend",
    [
        ("development", "firestore"),
        ("production", "memory"),
        ("production", "firestore"),
    ],
)
def test_webhook_without_secret_is_rejected_outside_local_memory(client, store, env, backend) -> None:
    app.state.settings = Settings(ENV=env, STORE_BACKEND=backend, LINE_CHANNEL_SECRET="")

    resp = client.post("/webhook", json=line_body(text_event(user_id="Uforged")))

    assert resp.status_code == 401
    assert store._scan_owner("Uforged") == []


def test_webhook_is_exempt_from_default_rate_limit(client) -> None:
    for _ in range(105):
        assert client.post("/webhook", json=line_body()).status_code == 200


def test_default_rate_limit_applies_to_other_routes(client) -> None:
    statuses = [client.get("/health").status_code for _ in range(101)]
    assert statuses[:100] == [200] * 100
    assert statuses[100] == 429


def test_webhook_processing_failure_returns_500(client, services, monkeypatch) -> None:
    def _boom(event):
        raise RuntimeError("firestore unavailable")

    monkeypatch.setattr(services.issuance, "handle_trigger", _boom)
    resp = client.post("/webhook", json=line_body(text_event()))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "processing failed"


def test_redeem_flow(client, store) -> None:
    code = client.post("/webhook", json=line_body(text_event())).json()[0]["code"]

    first = client.post("/api/redeem", json={"code": code.lower(), "staffPass": "1234"})
    assert first.status_code == 200
    assert first.json()["status"] == "OK"
    assert first.json()["remainingUses"] == 1
    assert first.json()["usageLimit"] == 2
    assert (first.json()["remain"], first.json()["limit"]) == (1, 2)

    second = client.post("/api/redeem", json={"code": code, "pass": "1234"})
    assert second.json()["remainingUses"] == 0
    assert second.json()["couponStatus"] == "consumed"

    third = client.post("/api/redeem", json={"code": code, "staff_pass": "1234"})
    assert third.status_code == 409
    assert third.json()["ok"] is False
    assert third.json()["status"] == "CONSUMED"


@pytest.mark.parametrize(
    "payload, status_code, status",
    [
        ({"staffPass": "1234"}, 400, "BAD_REQUEST"),
        ({"code": "NOPE2345", "staffPass": "1234"}, 404, "NOT_FOUND"),
        ({"code": "NOPE2345", "staffPass": "0000"}, 403, "INVALID_PASS"),
        ({"code": "NOPE2345"}, 403, "INVALID_PASS"),
    ],
)
def test_redeem_error_statuses(client, payload, status_code, status) -> None:
    resp = client.post("/api/redeem", json=payload)
    assert resp.status_code == status_code
    assert resp.json()["status"] == status
    assert resp.json()["message"]


def test_redeem_infrastructure_error_returns_500(client, services, monkeypatch) -> None:
    def _boom(code, staff_pass=None):
        raise RuntimeError("firestore unavailable")

    monkeypatch.setattr(services.redemption, "redeem", _boom)
    resp = client.post("/api/redeem", json={"code": "ABCD2345", "staffPass": "1234"})

    assert resp.status_code == 500
    assert resp.json()["status"] == "ERROR"


def test_redeem_rejects_non_object_body(client) -> None:
    resp = client.post("/api/redeem", json=["ABCD2345"])
    assert resp.status_code == 422


def test_get_coupon(client) -> None:
    code = client.post("/webhook", json=line_body(text_event())).json()[0]["code"]

    resp = client.get(f"/api/coupons/{code.lower()}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["code"] == code
    assert data["status"] == "active"
    assert data["remaining_uses"] == 2

    assert client.get("/api/coupons/NOPE2345").status_code == 404
