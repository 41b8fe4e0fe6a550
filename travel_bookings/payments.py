from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from travel_bookings.models import PaymentStatus

# The gateway retries any callback that is not acknowledged with exactly this.
CALLBACK_ACK: dict[str, Any] = {"ResultCode": 0, "ResultDesc": "Accepted"}

SUCCESS_CODE = "0"
USER_CANCELLED_CODE = "1032"
_RETRYABLE_STATUSES = {PaymentStatus.FAILED, PaymentStatus.CANCELLED}


class CallbackParseError(ValueError):
    pass


@dataclass(frozen=True)
class StkCallbackResult:
    checkout_request_id: str
    merchant_request_id: str | None
    result_code: str
    result_desc: str | None
    receipt_number: str | None = None
    amount: Any = None
    phone_number: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == SUCCESS_CODE

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus.COMPLETED if self.succeeded else PaymentStatus.FAILED


def _metadata_items(stk_callback: dict) -> dict[str, Any]:
    metadata = stk_callback.get("CallbackMetadata")
    if not isinstance(metadata, dict):
        return {}
    items = metadata.get("Item")
    if not isinstance(items, list):
        return {}
    return {
        item["Name"]: item.get("Value")
        for item in items
        if isinstance(item, dict) and "Name" in item
    }


def parse_stk_callback(payload: Any) -> StkCallbackResult:
    """
    Parse an STK push result notification:

        {"Body": {"stkCallback": {"CheckoutRequestID", "MerchantRequestID",
                                  "ResultCode", "ResultDesc",
                                  "CallbackMetadata"?: {"Item": [{Name, Value}]}}}}

    The receipt number is only read from the metadata of successful results.
    """
    try:
        stk = payload["Body"]["stkCallback"]
        checkout_request_id = stk["CheckoutRequestID"]
        result_code = str(stk["ResultCode"])
    except (KeyError, TypeError) as exc:
        raise CallbackParseError(f"malformed stkCallback: missing {exc}") from exc

    receipt = amount = phone = None
    if result_code == SUCCESS_CODE:
        items = _metadata_items(stk)
        receipt = items.get("MpesaReceiptNumber")
        amount = items.get("Amount")
        phone = items.get("PhoneNumber")

    return StkCallbackResult(
        checkout_request_id=str(checkout_request_id),
        merchant_request_id=stk.get("MerchantRequestID"),
        result_code=result_code,
        result_desc=stk.get("ResultDesc"),
        receipt_number=None if receipt is None else str(receipt),
        amount=amount,
        phone_number=None if phone is None else str(phone),
    )


def can_retry(payment: Any) -> bool:
    return (
        payment.payment_status in _RETRYABLE_STATUSES
        or payment.result_code == USER_CANCELLED_CODE
    )


def normalize_msisdn(phone: str) -> str:
    """
    Convert a Kenyan phone number to the 2547XXXXXXXX form Daraja expects.

    Accepts 07XXXXXXXX, 01XXXXXXXX, +2547XXXXXXXX and 2547XXXXXXXX, ignoring
    spaces and dashes. Raises ValueError otherwise.
    """
    digits = re.sub(r"[\s\-()]", "", phone).lstrip("+")
    if re.fullmatch(r"0[17]\d{8}", digits):
        digits = "254" + digits[1:]
    elif re.fullmatch(r"[17]\d{8}", digits):
        digits = "254" + digits
    if not re.fullmatch(r"254[17]\d{8}", digits):
        raise ValueError(f"Unsupported phone number: {phone!r}")
    return digits


def stk_timestamp(now: datetime) -> str:
    return now.strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()
