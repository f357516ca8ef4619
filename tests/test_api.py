"""API tests: inbound mail webhook, Gmail sync and trade listing."""

import base64

import httpx
import pytest

from app.api import sync
from app.api.email_inbound import InboundEmail, candidate_emails, forwarded_message_id
from app.services.email.gmail import GmailClient

ALICE_ID = "user-alice"
WEBHOOK_SECRET = "test-webhook-secret"
HEADERS = {"x-webhook-secret": WEBHOOK_SECRET}

OANDA_PAYLOAD = {
    "to": "import+alice.example.com@inbound.test",
    "from": "broker@oanda.com",
    "subject": "Order Confirmation",
    "body": "BUY USDJPY 0.10 lot @150.20",
}


class TestForwardingAddress:
    def test_candidates_rightmost_dot_first(self):
        assert candidate_emails("first.last.gmail.com") == [
            "first.last.gmail@com",
            "first.last@gmail.com",
            "first@last.gmail.com",
        ]

    def test_no_dot(self):
        assert candidate_emails("alice") == []

    def test_message_id_from_payload(self):
        assert forwarded_message_id(InboundEmail(to="x", body="y", message_id="<abc@mail>")) == "<abc@mail>"

    def test_message_id_is_stable_content_hash(self):
        first = forwarded_message_id(InboundEmail(**OANDA_PAYLOAD))
        second = forwarded_message_id(InboundEmail(**OANDA_PAYLOAD))
        other = forwarded_message_id(InboundEmail(**{**OANDA_PAYLOAD, "body": "SELL"}))

        assert first == second
        assert first.startswith("email-forward-")
        assert first != other


class TestEmailInboundWebhook:
    def test_end_to_end(self, client, store):
        resp = client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers=HEADERS)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["pair"] == "USDJPY"
        assert data["direction"] == "BUY"
        assert data["broker"] == "OANDA"

        trades = store._trades
        assert len(trades) == 1
        trade = trades[0]
        assert trade["id"] == data["tradeId"]
        assert trade["user_id"] == ALICE_ID
        assert trade["pair_normalized"] == "USDJPY"
        assert trade["direction"] == "BUY"
        assert trade["lot_size"] == pytest.approx(0.10)
        assert trade["broker"] == "OANDA"
        assert trade["is_verified"] is True
        assert trade["verification_source"] == "email_forward"
        assert "Forwarded" in trade["tags"]

    def test_resend_is_duplicate(self, client, store):
        client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers=HEADERS)
        resp = client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers=HEADERS)

        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["duplicate"] is True
        assert len(store._trades) == 1

    def test_alias_route(self, client, store):
        resp = client.post("/api/email-inbound", json=OANDA_PAYLOAD, headers=HEADERS)
        assert resp.json()["success"] is True

    def test_missing_secret(self, client, store):
        resp = client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD)
        assert resp.status_code == 401
        assert store._trades == []

    def test_wrong_secret(self, client):
        resp = client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers={"x-webhook-secret": "nope"})
        assert resp.status_code == 401

    def test_unconfigured_secret_rejects_everything(self, client):
        from app.api import auth

        auth.settings.email_ingest_secret = ""
        resp = client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers={"x-webhook-secret": ""})
        assert resp.status_code == 401

    def test_missing_body(self, client):
        payload = {k: v for k, v in OANDA_PAYLOAD.items() if k != "body"}
        resp = client.post("/api/webhooks/email-inbound", json=payload, headers=HEADERS)
        assert resp.status_code == 400

    def test_bad_forwarding_address(self, client):
        resp = client.post(
            "/api/webhooks/email-inbound", json={**OANDA_PAYLOAD, "to": "alice@example.com"}, headers=HEADERS
        )
        assert resp.status_code == 400

    def test_unknown_user(self, client):
        resp = client.post(
            "/api/webhooks/email-inbound",
            json={**OANDA_PAYLOAD, "to": "import+bob.example.com@inbound.test"},
            headers=HEADERS,
        )
        assert resp.status_code == 404

    def test_unparseable_email(self, client, store):
        resp = client.post(
            "/api/webhooks/email-inbound",
            json={**OANDA_PAYLOAD, "subject": "Newsletter", "body": "Market news this week"},
            headers=HEADERS,
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert "suggestion" in data
        assert store._trades == []

    def test_health(self, client):
        resp = client.get("/api/webhooks/email-inbound")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode()


def gmail_transport(list_status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            if list_status != 200:
                return httpx.Response(list_status, json={})
            return httpx.Response(200, json={"messages": [{"id": "g1"}]})
        return httpx.Response(
            200,
            json={
                "id": "g1",
                "snippet": "",
                "payload": {
                    "headers": [
                        {"name": "Subject", "value": "Trade confirmation"},
                        {"name": "From", "value": "OANDA <broker@oanda.com>"},
                    ],
                    "body": {"data": _b64("BUY USDJPY 0.10 lot @150.20")},
                },
            },
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def use_gmail(monkeypatch):
    def install(list_status: int = 200):
        transport = gmail_transport(list_status)
        monkeypatch.setattr(
            sync, "GmailClient", lambda token: GmailClient(token, base_url="https://gmail.test/v1", transport=transport)
        )

    return install


class TestSyncTrades:
    def test_requires_token(self, client):
        resp = client.post("/api/sync-trades", headers={"X-User-Id": ALICE_ID})
        assert resp.status_code == 401

    def test_requires_user(self, client):
        resp = client.post("/api/sync-trades", headers={"Authorization": "Bearer tok"})
        assert resp.status_code == 401

    def test_sync_imports_once(self, client, store, use_gmail):
        use_gmail()
        headers = {"Authorization": "Bearer tok", "X-User-Id": ALICE_ID}

        first = client.post("/api/sync-trades", headers=headers)
        second = client.post("/api/sync-trades", headers=headers)

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["count"] == 1
        assert first.json()["trades"][0]["data_source"] == "gmail_sync"
        assert second.json()["count"] == 0
        assert second.json()["duplicates"] == 1
        assert len(store._trades) == 1
        assert "AutoImport" in store._trades[0]["tags"]

    def test_requires_api_key(self, client, store, use_gmail):
        from app.api import auth

        use_gmail()
        auth.settings.api_key = "prod-key"
        auth.settings.app_env = "production"
        headers = {"Authorization": "Bearer tok", "X-User-Id": ALICE_ID}

        denied = client.post("/api/sync-trades", headers=headers)
        assert denied.status_code == 401
        assert store._trades == []

        allowed = client.post("/api/sync-trades", headers={**headers, "X-API-Key": "prod-key"})
        assert allowed.status_code == 200
        assert allowed.json()["count"] == 1

    def test_gmail_failure_is_502(self, client, use_gmail):
        use_gmail(list_status=500)
        resp = client.post("/api/sync-trades", headers={"Authorization": "Bearer tok", "X-User-Id": ALICE_ID})
        assert resp.status_code == 502
        assert "error" in resp.json()


class TestListTrades:
    def test_lists_user_trades(self, client):
        client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers=HEADERS)

        resp = client.get("/api/trades/", params={"user_id": ALICE_ID})

        assert resp.status_code == 200
        trades = resp.json()["trades"]
        assert len(trades) == 1
        assert trades[0]["pair"] == "USD/JPY"

    def test_other_user_sees_nothing(self, client):
        client.post("/api/webhooks/email-inbound", json=OANDA_PAYLOAD, headers=HEADERS)
        resp = client.get("/api/trades/", params={"user_id": "someone-else"})
        assert resp.json()["trades"] == []
