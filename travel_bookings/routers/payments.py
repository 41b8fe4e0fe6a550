import json
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger

from travel_bookings.crud import booking_crud, payment_crud
from travel_bookings.deps import (
    CurrentUser,
    EmailClient,
    EmailDeliveryError,
    MpesaClient,
    PaymentGatewayError,
    can_read_booking,
    can_write_booking,
    get_email_client,
    get_mpesa_client,
)
from travel_bookings.models import BookingStatus, PaymentStatus
from travel_bookings.notifications import HostNotFound, send_host_booking_notification
from travel_bookings.payments import (
    CALLBACK_ACK,
    CallbackParseError,
    StkCallbackResult,
    can_retry,
    parse_stk_callback,
)
from travel_bookings.rules import item_name
from travel_bookings.schemas import BookingResponse, PendingPaymentResponse
from travel_bookings.tickets import booking_reference

router = APIRouter(tags=["payments"])


async def _notify_host(
    email_client: EmailClient, booking: BookingResponse
) -> None:
    try:
        await send_host_booking_notification(
            email_client,
            host_id=booking.host_id,
            booking_id=booking.id,
            guest_name=booking.guest_name,
            item_name=item_name(booking.booking_details),
            total_amount=booking.total_amount,
            visit_date=booking.visit_date,
        )
    except (HostNotFound, EmailDeliveryError) as exc:
        logger.warning("Host notification skipped for booking {}: {}", booking.id, exc)
    except Exception:
        logger.exception("Host notification failed for booking {}", booking.id)


@router.post("/mpesa-callback")
async def mpesa_callback(
    request: Request,
    email_client: EmailClient = Depends(get_email_client),
) -> dict:
    """
    Result notification for an STK push.

    Always answers with the gateway's acknowledgement body and HTTP 200,
    whatever happens while processing, so the gateway does not keep retrying.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("M-Pesa callback with unreadable body ({} bytes)", len(body))
        payload = {"raw": body.decode("utf-8", errors="replace")}

    result: StkCallbackResult | None = None
    try:
        result = parse_stk_callback(payload)
    except CallbackParseError as exc:
        logger.warning("Ignoring M-Pesa callback: {}", exc)
    except Exception:
        logger.exception("Failed to parse M-Pesa callback")

    try:
        await payment_crud.log_callback(result, payload)
    except Exception:
        logger.exception("Failed to store M-Pesa callback log")

    if result is None:
        return CALLBACK_ACK

    try:
        applied = await payment_crud.apply_callback(result)
    except Exception:
        logger.exception(
            "Failed to apply M-Pesa callback: checkout_request_id={}",
            result.checkout_request_id,
        )
        return CALLBACK_ACK

    if applied is None:
        logger.warning(
            "No payment found for checkout_request_id={}", result.checkout_request_id
        )
        return CALLBACK_ACK

    payment, booking = applied
    logger.info(
        "Payment {} -> {} (result_code={} receipt={})",
        payment.id,
        payment.payment_status,
        result.result_code,
        result.receipt_number,
    )
    if result.succeeded and booking is not None:
        await _notify_host(email_client, booking)
    return CALLBACK_ACK


@router.get("/payments", response_model=list[PendingPaymentResponse])
async def list_open_payments(
    current_user: CurrentUser = Depends(can_read_booking),
) -> list[PendingPaymentResponse]:
    """The caller's payments still awaiting a result or open for retry."""
    return await payment_crud.list_payments(
        current_user.id,
        statuses=[
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        ],
    )


@router.post("/payments/{payment_id}/retry", response_model=PendingPaymentResponse)
async def retry_payment(
    payment_id: UUID,
    current_user: CurrentUser = Depends(can_write_booking),
    mpesa_client: MpesaClient = Depends(get_mpesa_client),
) -> PendingPaymentResponse:
    payment = await payment_crud.get_payment(payment_id, user_id=current_user.id)
    if not payment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found"
        )
    if not can_retry(payment):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Payment is '{payment.payment_status}' and cannot be retried",
        )

    booking = await booking_crud.get_booking(payment.booking_id)
    if not booking or booking.status != BookingStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The booking for this payment is no longer active",
        )

    try:
        stk = await mpesa_client.stk_push(
            phone=payment.phone_number,
            amount=payment.amount,
            account_reference=booking_reference(booking),
            description=item_name(booking.booking_details),
        )
    except PaymentGatewayError as exc:
        logger.error("Payment retry failed for payment {}: {}", payment.id, exc)
        await payment_crud.mark_initiation_failed(payment.id, str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment initiation failed, try again shortly",
        ) from None

    attached = await payment_crud.attach_checkout(
        payment.id, stk["CheckoutRequestID"], stk.get("MerchantRequestID")
    )
    if not attached:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found"
        )
    return attached
