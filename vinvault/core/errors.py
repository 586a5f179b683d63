"""
VINVAULT: Error Taxonomy

FulfillmentError is what callers see: a machine-readable code, an HTTP
status and a message safe to show a user. The other exceptions are raised
by collaborators and translated by the gate before they leave the core.
"""

from __future__ import annotations


class FulfillmentError(Exception):
    def __init__(self, code: str, status_code: int, detail: str):
        super().__init__(detail)
        self.code = code
        self.status_code = status_code
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}

    def __repr__(self) -> str:
        return f"FulfillmentError({self.code!r}, {self.status_code})"

    # ── Input errors ─────────────────────────────────────────────────

    @classmethod
    def invalid_request(cls, detail: str = "VIN or Plate+State required.") -> FulfillmentError:
        return cls("invalid_request", 400, detail)

    @classmethod
    def invalid_vin(cls, detail: str = "That VIN is not valid. Check it and try again.") -> FulfillmentError:
        return cls("invalid_vin", 400, detail)

    # ── Authorization errors ─────────────────────────────────────────

    @classmethod
    def purchase_required(cls) -> FulfillmentError:
        return cls("purchase_required", 401, "Complete purchase to view this report.")

    @classmethod
    def insufficient_credits(cls) -> FulfillmentError:
        return cls("insufficient_credits", 402, "Insufficient credits. Buy credits to view this report.")

    @classmethod
    def payment_incomplete(cls) -> FulfillmentError:
        return cls("payment_incomplete", 402, "Payment not completed.")

    @classmethod
    def receipt_invalid(cls) -> FulfillmentError:
        return cls("receipt_invalid", 400, "Could not verify this purchase receipt. Contact support if you were charged.")

    @classmethod
    def receipt_used(cls) -> FulfillmentError:
        return cls("receipt_used", 409, "This receipt was already used.")

    @classmethod
    def receipt_mismatch(cls) -> FulfillmentError:
        return cls("receipt_mismatch", 409, "This receipt was for a different report.")

    @classmethod
    def receipt_credited(cls) -> FulfillmentError:
        return cls("receipt_credited", 409, "This purchase was added to your credit balance. Sign in to use it.")

    # ── Upstream / lookup errors ─────────────────────────────────────

    @classmethod
    def provider_error(cls, detail: str = "The report provider is unavailable. You were not charged; try again shortly.") -> FulfillmentError:
        return cls("provider_error", 502, detail)

    @classmethod
    def provider_rejected(cls) -> FulfillmentError:
        return cls("invalid_vin", 422, "No report is available for this VIN. You were not charged.")

    @classmethod
    def not_found(cls, detail: str = "No cached report found.") -> FulfillmentError:
        return cls("not_found", 404, detail)

    @classmethod
    def already_cached(cls) -> FulfillmentError:
        return cls("already_cached", 409, "This report is already available. Open it instead of buying again.")

    @classmethod
    def unsupported_content(cls) -> FulfillmentError:
        return cls("unsupported_content", 500, "Unsupported report content. Contact support.")


class InsufficientCredits(Exception):
    """A spend would take a balance below zero."""

    def __init__(self, user_id: str, balance: int, cost: int):
        super().__init__(f"user {user_id} has {balance} credits, needs {cost}")
        self.user_id = user_id
        self.balance = balance
        self.cost = cost


class ProviderError(Exception):
    """Transient upstream failure: timeout, transport error, 5xx."""


class ProviderRejected(ProviderError):
    """The provider answered and explicitly refused the VIN."""


class ReceiptCheckError(Exception):
    """The payment processor could not be queried for a receipt."""
