"""HTTP surface: status codes, content types and headers."""

import pytest
from fastapi.testclient import TestClient

from vinvault.core.errors import ProviderError
from vinvault.server import api
from vinvault.server.auth import create_token
from vinvault.tests.conftest import GZ_HTML, HTML, JWT_SECRET, PDF, VIN, VIN_2, completed_event


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr(api.app.state, "services", services)
    api.limiter.reset()
    return TestClient(api.app)


def _auth(user_id="u1"):
    return {"Authorization": f"Bearer {create_token(user_id, secret=JWT_SECRET)}"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


class TestReportRoute:
    def test_guest_needs_purchase(self, client):
        resp = client.post("/api/report", json={"vin": VIN})
        assert resp.status_code == 401
        assert resp.json() == {"error": "purchase_required", "detail": "Complete purchase to view this report."}

    def test_missing_vin(self, client):
        resp = client.post("/api/report", json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_invalid_vin(self, client):
        resp = client.post("/api/report", json={"vin": "NOTAVIN"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_vin"

    def test_credit_purchase_then_cache(self, client, services, provider):
        services.credits.grant("u1", 1, ref="seed")

        first = client.post("/api/report", json={"vin": VIN, "reportType": "carfax"}, headers=_auth())
        assert first.status_code == 200
        assert first.headers["content-type"].startswith("text/html")
        assert first.headers["x-report-source"] == "live"
        assert first.headers["x-credits-remaining"] == "0"
        assert first.text == HTML

        second = client.post("/api/report", json={"vin": VIN}, headers=_auth())
        assert second.status_code == 200
        assert second.headers["x-report-source"] == "cache"
        assert "x-credits-remaining" not in second.headers
        assert len(provider.fetch_calls) == 1

    def test_insufficient_credits(self, client):
        resp = client.post("/api/report", json={"vin": VIN}, headers=_auth())
        assert resp.status_code == 402
        assert resp.json()["error"] == "insufficient_credits"

    def test_bad_token_is_treated_as_guest(self, client, services):
        services.credits.grant("u1", 1, ref="seed")
        resp = client.post("/api/report", json={"vin": VIN}, headers={"Authorization": "Bearer junk"})
        assert resp.status_code == 401

    def test_receipt_legacy_field_names(self, client, services):
        resp = client.post("/api/report", json={"vin": VIN, "type": "carfax", "oneTimeSession": "cs_paid"})
        assert resp.status_code == 200
        again = client.post("/api/report", json={"vin": VIN_2, "oneTimeReceipt": "cs_paid"})
        assert again.status_code == 409
        assert again.json()["error"] == "receipt_used"

    def test_provider_outage_returns_502_and_refunds(self, client, services, provider):
        services.credits.grant("u1", 1, ref="seed")
        provider.error = ProviderError("timeout")
        resp = client.post("/api/report", json={"vin": VIN}, headers=_auth())
        assert resp.status_code == 502
        assert services.credits.get_balance("u1") == 1

    def test_allow_live_false_on_miss(self, client):
        resp = client.post("/api/report", json={"vin": VIN, "allowLive": False})
        assert resp.status_code == 404

    def test_cached_pdf_served_inline(self, client, services):
        services.cache.put(VIN, "carfax", PDF)
        resp = client.post("/api/report", json={"vin": VIN})
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-disposition"].startswith("inline")
        assert resp.content == PDF

    def test_html_converted_when_pdf_requested(self, client, services, provider):
        services.cache.put(VIN, "carfax", GZ_HTML)
        resp = client.post("/api/report", json={"vin": VIN, "outputFormat": "pdf"})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-disposition"] == f'attachment; filename="{VIN}-carfax.pdf"'
        assert provider.pdf_calls == 1

    def test_unknown_content(self, client, services):
        services.cache.put(VIN, "carfax", b"\x00garbage")
        resp = client.post("/api/report", json={"vin": VIN})
        assert resp.status_code == 500
        assert resp.json()["error"] == "unsupported_content"

    def test_bad_output_format_rejected(self, client):
        resp = client.post("/api/report", json={"vin": VIN, "as": "docx"})
        assert resp.status_code == 422


class TestCreditsRoutes:
    def test_my_credits_requires_auth(self, client):
        assert client.get("/api/credits").status_code == 401

    def test_balances_and_ledger(self, client, services):
        services.credits.grant("u1", 10, ref="cs_1")
        assert client.get("/api/credits", headers=_auth()).json() == {"user_id": "u1", "balance": 10}
        assert client.get("/api/credits/u1").json() == {"balance": 10}

        ledger = client.get("/api/credits/u1/ledger", headers=_auth()).json()
        assert ledger["balance"] == 10
        assert ledger["entries"][0]["reason"] == "purchase"

    def test_ledger_is_private(self, client):
        resp = client.get("/api/credits/u2/ledger", headers=_auth("u1"))
        assert resp.status_code == 403


class TestCheckoutRoutes:
    def test_checkout_and_finalize(self, client, gateway, services):
        resp = client.post("/api/create-checkout-session", json={"priceId": "bundle"}, headers=_auth())
        assert resp.status_code == 200
        body = resp.json()
        assert body["checkoutUrl"] == body["url"]

        gateway.mark_paid(body["sessionId"])
        done = client.post("/api/checkout/finalize", json={"sessionId": body["sessionId"]})
        assert done.status_code == 200
        assert done.json()["status"] == "credited"
        assert services.credits.get_balance("u1") == 10

    def test_checkout_for_cached_report(self, client, services):
        services.cache.put(VIN, "carfax", PDF)
        resp = client.post("/api/create-checkout-session", json={"vin": VIN, "reportType": "carfax"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "already_cached"

    def test_finalize_requires_session_id(self, client):
        assert client.post("/api/checkout/finalize", json={}).status_code == 422

    def test_webhook(self, client, gateway, services):
        out = client.post("/api/create-checkout-session", json={"userId": "u1", "priceId": "single"}).json()
        payload = completed_event(gateway.mark_paid(out["sessionId"]))

        bad = client.post("/api/stripe-webhook", content=payload, headers={"stripe-signature": "forged"})
        assert bad.status_code == 400

        ok = client.post("/api/stripe-webhook", content=payload, headers={"stripe-signature": "good"})
        assert ok.status_code == 200
        assert ok.json()["status"] == "credited"

        dup = client.post("/api/stripe-webhook", content=payload, headers={"stripe-signature": "good"})
        assert dup.status_code == 200
        assert dup.json()["status"] == "duplicate"
        assert services.credits.get_balance("u1") == 1


class TestShareRoutes:
    def test_share_uncached(self, client):
        resp = client.post("/api/share", json={"vin": VIN})
        assert resp.status_code == 404

    def test_share_and_view(self, client, services):
        services.cache.put(VIN, "carfax", GZ_HTML)
        resp = client.post("/api/share", json={"vin": VIN, "reportType": "carfax"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["url"].startswith("https://vinvault.test/view/")
        assert "T" in body["expiresAt"]

        token = body["url"].rsplit("/", 1)[1]
        view = client.get(f"/view/{token}")
        assert view.status_code == 200
        assert view.text == HTML

    def test_view_unknown_token(self, client):
        resp = client.get("/view/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Link expired or invalid."

    def test_view_unreadable_token(self, client, services):
        services.shares.store.put("garbled", b"{not json")
        resp = client.get("/view/garbled")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Link expired or invalid."
