"""
VINVAULT: Request Models

Accept the camelCase field names the web client sends as well as the short
legacy names (type, as, oneTimeSession) older clients still post.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from vinvault.core.fulfillment import DEFAULT_REPORT_TYPE, FulfillmentRequest


class ReportRequest(BaseModel):
    vin: Optional[str] = None
    state: Optional[str] = None
    plate: Optional[str] = None
    report_type: str = Field(
        default=DEFAULT_REPORT_TYPE,
        validation_alias=AliasChoices("reportType", "report_type", "type"),
    )
    output_format: Literal["html", "pdf"] = Field(
        default="html",
        validation_alias=AliasChoices("outputFormat", "output_format", "as"),
    )
    allow_live: bool = Field(
        default=True,
        validation_alias=AliasChoices("allowLive", "allow_live"),
    )
    one_time_receipt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("oneTimeReceipt", "one_time_receipt", "oneTimeSession"),
    )

    def to_fulfillment(self, user_id: Optional[str]) -> FulfillmentRequest:
        return FulfillmentRequest(
            vin=self.vin,
            state=self.state,
            plate=self.plate,
            report_type=self.report_type,
            allow_live=self.allow_live,
            receipt_id=(self.one_time_receipt or "").strip() or None,
            user_id=user_id,
        )


class CheckoutRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))
    price_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("priceId", "price_id"))
    vin: Optional[str] = None
    report_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reportType", "report_type", "type"),
    )


class FinalizeRequest(BaseModel):
    session_id: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("sessionId", "session_id"),
    )


class ShareRequest(BaseModel):
    vin: str = Field(..., min_length=1)
    report_type: str = Field(
        default=DEFAULT_REPORT_TYPE,
        validation_alias=AliasChoices("reportType", "report_type", "type"),
    )
