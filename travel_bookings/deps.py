from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from urllib.parse import unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from travel_bookings import settings
from travel_bookings.payments import normalize_msisdn, stk_password, stk_timestamp
from travel_bookings.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return (
            BookingScope.ADMIN in self.scopes
            or BookingScope.ADMIN_WRITE in self.scopes
        )

    @property
    def can_read_all(self) -> bool:
        return self.is_admin or BookingScope.ADMIN_READ in self.scopes


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the identity headers injected by the API gateway after it has
    validated the caller's token. Only safe behind that gateway.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


def require_any_scope(*accepted: str):
    """Like require_scopes, but one of the accepted scopes is enough."""

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if not any(s in current_user.scopes for s in accepted):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of: {', '.join(accepted)}",
            )
        return current_user

    return _dep


def get_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_read_booking = require_scopes(BookingScope.READ)
can_write_booking = require_scopes(BookingScope.WRITE)
can_reschedule_booking = require_scopes(BookingScope.RESCHEDULE)
can_write_listing = require_scopes(BookingScope.LISTINGS_WRITE)
can_approve_listing = require_scopes(BookingScope.ADMIN_LISTINGS)
can_send_notifications = require_scopes(BookingScope.NOTIFY)

# bookings:read   → guest sees own bookings
# bookings:manage → host sees bookings on own listings
# admin:bookings* → admin sees all
can_read_or_manage_booking = require_any_scope(
    BookingScope.READ,
    BookingScope.MANAGE,
    BookingScope.ADMIN,
    BookingScope.ADMIN_READ,
)


# ---------------------------------------------------------------------------
# MpesaClient: thin async wrapper around the Daraja STK push API
# ---------------------------------------------------------------------------


class PaymentGatewayError(Exception):
    pass


@lru_cache(maxsize=1)
def _get_mpesa_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.mpesa_base_url,
        timeout=httpx.Timeout(15.0),
    )


def _whole_shillings(amount: Decimal) -> int:
    return max(1, int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


class MpesaClient:
    """
    Thin async wrapper around Safaricom Daraja.
    Every call fetches a fresh OAuth token before the STK push.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_mpesa_http_client()

    async def _access_token(self) -> str:
        try:
            resp = await self._client.get(
                "/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(settings.mpesa_consumer_key, settings.mpesa_consumer_secret),
            )
        except httpx.RequestError as exc:
            raise PaymentGatewayError(f"M-Pesa auth request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise PaymentGatewayError(f"M-Pesa auth returned {resp.status_code}")
        try:
            token = resp.json().get("access_token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise PaymentGatewayError("M-Pesa auth returned no access token")
        return token

    async def stk_push(
        self,
        *,
        phone: str,
        amount: Decimal,
        account_reference: str,
        description: str,
        now: datetime | None = None,
    ) -> dict:
        """
        Ask the gateway to prompt `phone` for payment.
        Returns the gateway response (CheckoutRequestID, MerchantRequestID,
        CustomerMessage). Raises PaymentGatewayError when the push is refused.
        """
        try:
            msisdn = normalize_msisdn(phone)
        except ValueError as exc:
            raise PaymentGatewayError(str(exc)) from exc

        timestamp = stk_timestamp(now or datetime.now())
        payload = {
            "BusinessShortCode": settings.mpesa_shortcode,
            "Password": stk_password(
                settings.mpesa_shortcode, settings.mpesa_passkey, timestamp
            ),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": _whole_shillings(amount),
            "PartyA": msisdn,
            "PartyB": settings.mpesa_shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": settings.mpesa_callback_url,
            "AccountReference": account_reference[:12],
            "TransactionDesc": description[:13],
        }

        token = await self._access_token()
        try:
            resp = await self._client.post(
                "/mpesa/stkpush/v1/processrequest",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as exc:
            raise PaymentGatewayError(f"STK push request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"raw_response": resp.text}

        if resp.status_code >= 400 or str(data.get("ResponseCode")) != "0":
            message = data.get("errorMessage") or data.get("ResponseDescription")
            raise PaymentGatewayError(
                f"STK push rejected ({resp.status_code}): {message or data}"
            )

        logger.info(
            "STK push accepted: checkout_request_id={}",
            data.get("CheckoutRequestID"),
        )
        return data


_mpesa_client = MpesaClient()


def get_mpesa_client() -> MpesaClient:
    return _mpesa_client


# ---------------------------------------------------------------------------
# EmailClient: thin async wrapper around the Resend email API
# ---------------------------------------------------------------------------


class EmailDeliveryError(Exception):
    pass


@lru_cache(maxsize=1)
def _get_email_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.resend_base_url,
        timeout=httpx.Timeout(10.0),
    )


class EmailClient:
    """Thin async wrapper around Resend. No retries: failures surface to the caller."""

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_email_http_client()

    async def send(
        self,
        *,
        sender: str,
        to: list[str],
        subject: str,
        html: str,
    ) -> dict:
        try:
            resp = await self._client.post(
                "/emails",
                json={"from": sender, "to": to, "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            )
        except httpx.RequestError as exc:
            raise EmailDeliveryError(f"Email request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise EmailDeliveryError(
                f"Email API returned {resp.status_code}: {resp.text}"
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise EmailDeliveryError(
                f"Email API returned an unreadable body: {resp.text[:200]}"
            ) from exc


_email_client = EmailClient()


def get_email_client() -> EmailClient:
    return _email_client
