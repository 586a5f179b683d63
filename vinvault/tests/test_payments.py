"""Receipt verification backends and routing."""

from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import requests
import stripe

from vinvault.core.errors import ReceiptCheckError
from vinvault.core.payments import (
    PaymentVerifier,
    PayPalCaptureVerifier,
    ProcessorBackend,
    ReceiptVerifier,
    StripeSessionVerifier,
)

CAPTURE_ID = "8MC585209K746392H"


def _json_response(payload):
    resp = Mock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


class TestStripeSessions:
    def test_paid_session(self):
        verifier = StripeSessionVerifier("sk_test")
        with patch.object(stripe.checkout.Session, "retrieve", return_value=SimpleNamespace(payment_status="paid")):
            status = verifier.verify_receipt("cs_test_1")
        assert status.paid
        assert status.backend == "stripe"

    def test_unpaid_session(self):
        verifier = StripeSessionVerifier("sk_test")
        with patch.object(stripe.checkout.Session, "retrieve", return_value=SimpleNamespace(payment_status="unpaid")):
            assert not verifier.verify_receipt("cs_test_1").paid

    def test_stripe_error_cannot_verify(self):
        verifier = StripeSessionVerifier("sk_test")
        err = stripe.APIConnectionError("network down")
        with patch.object(stripe.checkout.Session, "retrieve", side_effect=err):
            with pytest.raises(ReceiptCheckError):
                verifier.verify_receipt("cs_test_1")

    def test_unconfigured(self):
        with pytest.raises(ReceiptCheckError):
            StripeSessionVerifier("").verify_receipt("cs_test_1")


class TestPayPalCaptures:
    def test_completed_capture(self):
        session = Mock()
        session.post.return_value = _json_response({"access_token": "tok"})
        session.get.return_value = _json_response({"status": "COMPLETED"})
        verifier = PayPalCaptureVerifier("id", "secret", session=session)

        status = verifier.verify_receipt(CAPTURE_ID)

        assert status.paid
        assert session.get.call_args[0][0].endswith(f"/v2/payments/captures/{CAPTURE_ID}")
        assert session.get.call_args[1]["headers"] == {"Authorization": "Bearer tok"}

    def test_pending_capture(self):
        session = Mock()
        session.post.return_value = _json_response({"access_token": "tok"})
        session.get.return_value = _json_response({"status": "PENDING"})
        verifier = PayPalCaptureVerifier("id", "secret", session=session)
        assert not verifier.verify_receipt(CAPTURE_ID).paid

    def test_transport_error(self):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("down")
        verifier = PayPalCaptureVerifier("id", "secret", session=session)
        with pytest.raises(ReceiptCheckError):
            verifier.verify_receipt(CAPTURE_ID)


class TestRouting:
    def test_selects_backend_by_shape(self):
        stripe_backend = StripeSessionVerifier("sk_test")
        paypal_backend = PayPalCaptureVerifier("id", "secret", session=Mock())
        router = ReceiptVerifier([stripe_backend, paypal_backend])

        assert router.select("cs_test_abc") is stripe_backend
        assert router.select(CAPTURE_ID) is paypal_backend
        assert not router.accepts("8mc585209k746392h")

    def test_unknown_shape_cannot_verify(self):
        router = ReceiptVerifier([StripeSessionVerifier("sk_test")])
        with pytest.raises(ReceiptCheckError):
            router.verify_receipt("pi_123")

    def test_router_uses_backend_meaning_of_paid(self):
        session = Mock()
        session.post.return_value = _json_response({"access_token": "tok"})
        session.get.return_value = _json_response({"status": "COMPLETED"})
        router = ReceiptVerifier([
            StripeSessionVerifier("sk_test"),
            PayPalCaptureVerifier("id", "secret", session=session),
        ])
        status = router.verify_receipt(CAPTURE_ID)
        assert status.paid
        assert status.backend == "paypal"

    def test_router_is_a_verifier_not_a_backend(self):
        router = ReceiptVerifier([StripeSessionVerifier("sk_test")])
        assert isinstance(router, PaymentVerifier)
        assert not isinstance(router, ProcessorBackend)
        assert not hasattr(router, "capture_status")
        assert not hasattr(router, "is_paid_status")

    def test_backend_must_define_meaning_of_paid(self):
        class StatusOnly(ProcessorBackend):
            def accepts(self, receipt_id):
                return True

            def capture_status(self, receipt_id):
                return "paid"

        with pytest.raises(TypeError):
            StatusOnly()

    def test_router_delegates_to_stripe_backend(self):
        with patch.object(stripe.checkout.Session, "retrieve", return_value=SimpleNamespace(payment_status="unpaid")):
            status = ReceiptVerifier([StripeSessionVerifier("sk_test")]).verify_receipt("cs_test_abc")
        assert not status.paid
        assert (status.status, status.backend) == ("unpaid", "stripe")
