from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from loguru import logger

from travel_bookings.crud import notification_crud
from travel_bookings.deps import (
    CurrentUser,
    EmailClient,
    EmailDeliveryError,
    can_send_notifications,
    get_current_user,
    get_email_client,
)
from travel_bookings.notifications import (
    HostNotFound,
    send_host_booking_notification,
    send_payment_initiation,
)
from travel_bookings.schemas import (
    HostNotificationRequest,
    NotificationResponse,
    PaymentInitiationRequest,
)

router = APIRouter(tags=["notifications"])


@router.post("/send-host-booking-notification")
async def host_booking_notification(
    payload: HostNotificationRequest,
    _: CurrentUser = Depends(can_send_notifications),
    email_client: EmailClient = Depends(get_email_client),
):
    try:
        data = await send_host_booking_notification(
            email_client,
            host_id=payload.host_id,
            booking_id=payload.booking_id,
            guest_name=payload.guest_name,
            item_name=payload.item_name,
            total_amount=payload.total_amount,
            visit_date=payload.visit_date,
        )
    except HostNotFound:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "error": "Host email not found"},
        )
    except EmailDeliveryError as exc:
        logger.error("Host notification failed for booking {}: {}", payload.booking_id, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc)},
        )
    except Exception as exc:
        logger.exception("Host notification failed for booking {}", payload.booking_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc) or type(exc).__name__},
        )
    return {"success": True, "data": data}


@router.post("/send-payment-initiation")
async def payment_initiation(
    payload: PaymentInitiationRequest,
    _: CurrentUser = Depends(can_send_notifications),
    email_client: EmailClient = Depends(get_email_client),
):
    try:
        data = await send_payment_initiation(
            email_client,
            email=payload.email,
            guest_name=payload.guest_name,
            item_name=payload.item_name,
            total_amount=payload.total_amount,
            phone=payload.phone,
        )
    except EmailDeliveryError as exc:
        logger.error("Payment initiation email failed: {}", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc)},
        )
    except Exception as exc:
        logger.exception("Payment initiation email failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc) or type(exc).__name__},
        )
    return {"success": True, "data": data}


@router.get("/notifications", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
) -> list[NotificationResponse]:
    return await notification_crud.list_notifications(
        current_user.id, unread_only=unread_only
    )


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
) -> NotificationResponse:
    notification = await notification_crud.mark_read(notification_id, current_user.id)
    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found"
        )
    return notification
