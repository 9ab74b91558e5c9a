"""Typed view of the JSON body Grow posts to the notify URL."""

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from payrecon.errors import PayloadError


def _text(value):
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise PayloadError("Expected a scalar field value")
    text = str(value).strip()
    return text or None


@dataclass
class CustomFields:
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    billing_period: Optional[str] = None
    installments: Optional[str] = None
    credit_days: Optional[str] = None

    @classmethod
    def from_dict(cls, raw):
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise PayloadError("customFields must be an object")
        return cls(
            user_id=_text(raw.get("cField1")),
            plan_id=_text(raw.get("cField2")),
            billing_period=_text(raw.get("cField3")),
            installments=_text(raw.get("cField4")),
            credit_days=_text(raw.get("cField5")),
        )


@dataclass
class GrowWebhookData:
    transaction_id: Optional[str] = None
    process_id: Optional[str] = None
    process_token: Optional[str] = None
    asmachta: Optional[str] = None
    card_suffix: Optional[str] = None
    card_brand: Optional[str] = None
    card_exp: Optional[str] = None
    status_code: Optional[str] = None
    status: Optional[str] = None
    sum: Optional[str] = None
    payment_type: Optional[str] = None
    description: Optional[str] = None
    custom_fields: CustomFields = field(default_factory=CustomFields)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self):
        """``sum`` as a Decimal, or None when the processor omitted it."""
        if self.sum is None:
            return None
        return Decimal(self.sum)

    @classmethod
    def from_dict(cls, raw):
        if not isinstance(raw, dict):
            raise PayloadError("data must be an object")
        data = cls(
            transaction_id=_text(raw.get("transactionId")),
            process_id=_text(raw.get("processId")),
            process_token=_text(raw.get("processToken")),
            asmachta=_text(raw.get("asmachta")),
            card_suffix=_text(raw.get("cardSuffix")),
            card_brand=_text(raw.get("cardBrand")),
            card_exp=_text(raw.get("cardExp")),
            status_code=_text(raw.get("statusCode")),
            status=_text(raw.get("status")),
            sum=_text(raw.get("sum")),
            payment_type=_text(raw.get("paymentType")),
            description=_text(raw.get("description")),
            custom_fields=CustomFields.from_dict(raw.get("customFields")),
            raw=raw,
        )
        if data.sum is not None:
            try:
                Decimal(data.sum)
            except InvalidOperation:
                raise PayloadError(f"Invalid sum {data.sum!r}")
        return data


@dataclass
class GrowWebhookPayload:
    status: Optional[str]
    data: GrowWebhookData
    err: Optional[str] = None

    @classmethod
    def from_dict(cls, raw):
        if not isinstance(raw, dict):
            raise PayloadError("Webhook body must be a JSON object")
        if "data" not in raw:
            raise PayloadError("Webhook body missing data")
        return cls(
            status=_text(raw.get("status")),
            err=_text(raw.get("err")) if not isinstance(raw.get("err"), dict) else json.dumps(raw["err"]),
            data=GrowWebhookData.from_dict(raw["data"]),
        )

    @classmethod
    def from_json(cls, raw_body):
        try:
            body = json.loads(raw_body)
        except (TypeError, ValueError) as e:
            raise PayloadError(f"Malformed JSON: {e}")
        return cls.from_dict(body)
