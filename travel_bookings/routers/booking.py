from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from loguru import logger

from travel_bookings.cache import invalidate_availability_cache
from travel_bookings.crud import booking_crud, listing_crud, payment_crud
from travel_bookings.deps import (
    CurrentUser,
    EmailClient,
    EmailDeliveryError,
    MpesaClient,
    PaymentGatewayError,
    can_read_or_manage_booking,
    can_reschedule_booking,
    can_write_booking,
    get_current_user,
    get_email_client,
    get_mpesa_client,
    get_now,
)
from travel_bookings.models import BookingStatus, ListingType
from travel_bookings.notifications import send_payment_initiation
from travel_bookings.reschedule import (
    DateNotSelectable,
    RescheduleError,
    RescheduleFlow,
    RescheduleState,
    check_eligibility,
    earliest_date,
    local_today,
)
from travel_bookings.rules import (
    BookingRuleError,
    check_visit_date,
    compute_total,
    is_bookable,
    item_name,
    resolve_visit_date,
)
from travel_bookings.schemas import (
    BookingCreate,
    BookingFilters,
    BookingResponse,
    BookingStatusUpdate,
    BookingSubmitted,
    ListingResponse,
    RescheduleCreate,
    RescheduleOptions,
    RescheduleResult,
)
from travel_bookings.scopes import BookingScope
from travel_bookings.tickets import booking_reference, has_ticket, render_ticket_pdf

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Transition guard helpers
# ---------------------------------------------------------------------------

_VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.ACTIVE: {BookingStatus.CANCELLED, BookingStatus.REJECTED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}


def _assert_transition(
    old_status: BookingStatus,
    new_status: BookingStatus,
    booking_user_id: UUID,
    booking_host_id: UUID,
    current_user: CurrentUser,
) -> None:
    """
    Raise HTTP 400/403 if the transition is invalid or the caller lacks permission.

    Rules:
      active → cancelled : CANCEL + guest, OR MANAGE + host, OR admin
      active → rejected  : MANAGE + host, OR admin
    """
    if new_status not in _VALID_TRANSITIONS.get(old_status, set()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Cannot transition from '{old_status}' to '{new_status}'. "
                "Allowed: "
                f"{[s.value for s in _VALID_TRANSITIONS.get(old_status, set())]}"
            ),
        )

    if current_user.is_admin:
        return

    is_host = current_user.id == booking_host_id
    has_manage = BookingScope.MANAGE in current_user.scopes

    if new_status == BookingStatus.REJECTED:
        if not (has_manage and is_host):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Rejecting a booking requires '{BookingScope.MANAGE}' "
                    "scope and being the listing host."
                ),
            )
    elif new_status == BookingStatus.CANCELLED:
        is_guest = current_user.id == booking_user_id
        has_cancel = BookingScope.CANCEL in current_user.scopes
        if not ((has_cancel and is_guest) or (has_manage and is_host)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Cancelling requires '{BookingScope.CANCEL}' scope as the guest, "
                    f"or '{BookingScope.MANAGE}' scope as the listing host."
                ),
            )


async def _visible_booking(booking_id: UUID, current_user: CurrentUser) -> BookingResponse:
    """Fetch a booking scoped to what the caller may see; 404 otherwise."""
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if current_user.can_read_all:
        booking = await booking_crud.get_booking(booking_id)
    elif is_manager and not is_reader:
        booking = await booking_crud.get_booking(booking_id, host_id=current_user.id)
    else:
        booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)

    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return booking


async def _reschedule_flow(
    booking: BookingResponse, listing: ListingResponse, now: datetime
) -> RescheduleFlow:
    eligibility = check_eligibility(
        booking.booking_type,
        booking.visit_date,
        now,
        is_flexible_date=listing.is_flexible_date,
        is_custom_date=listing.is_custom_date,
        status=booking.status,
    )
    booked = (
        await booking_crud.booked_slots_by_date(booking.item_id, exclude_id=booking.id)
        if eligibility.eligible
        else {}
    )
    return RescheduleFlow(
        booking_id=booking.id,
        current_date=booking.visit_date,
        slots=booking.slots_booked or 1,
        # trips run every day of their flexible window
        working_days=[] if booking.booking_type == ListingType.TRIP else listing.days_opened,
        capacity=listing.capacity,
        booked_by_date=booked,
        now=now,
        eligibility=eligibility,
    )


async def _own_booking_and_listing(
    booking_id: UUID, current_user: CurrentUser
) -> tuple[BookingResponse, ListingResponse]:
    if current_user.is_admin:
        booking = await booking_crud.get_booking(booking_id)
    else:
        booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    listing = await listing_crud.get_listing(booking.item_id)
    if not listing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found"
        )
    return booking, listing


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> list[BookingResponse]:
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if current_user.can_read_all:
        return await booking_crud.list_bookings(filters=filters)
    if is_manager and not is_reader:
        return await booking_crud.list_bookings(
            filters=filters, host_id=current_user.id
        )
    return await booking_crud.list_bookings(filters=filters, user_id=current_user.id)


@router.post("/", response_model=BookingSubmitted, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    mpesa_client: MpesaClient = Depends(get_mpesa_client),
    email_client: EmailClient = Depends(get_email_client),
    now: datetime = Depends(get_now),
) -> BookingSubmitted:
    # 1. Validate the listing exists and is open for bookings
    listing = await listing_crud.get_listing(payload.item_id)
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found"
        )
    if not is_bookable(listing):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Listing is not available for booking",
        )

    # 2. Date rules and price
    try:
        visit_date = resolve_visit_date(listing, payload.visit_date)
        check_visit_date(listing, visit_date, local_today(now))
    except BookingRuleError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from None
    total = compute_total(listing, payload.adults, payload.children)

    # 3. Persist booking + pending payment (capacity checked under lock)
    booking, payment = await booking_crud.create_booking(
        listing=listing,
        user_id=current_user.id,
        payload=payload,
        visit_date=visit_date,
        total_amount=total,
    )
    await invalidate_availability_cache(listing.id)

    # 4. Prompt the guest's phone; the rows stay behind if this fails
    try:
        stk = await mpesa_client.stk_push(
            phone=payload.guest_phone,
            amount=total,
            account_reference=booking_reference(booking),
            description=listing.name,
        )
    except PaymentGatewayError as exc:
        logger.error("Payment initiation failed for booking {}: {}", booking.id, exc)
        await payment_crud.mark_initiation_failed(payment.id, str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment initiation failed, retry from your bookings",
        ) from None

    attached = await payment_crud.attach_checkout(
        payment.id, stk["CheckoutRequestID"], stk.get("MerchantRequestID")
    )

    # 5. Tell the guest to look at their phone
    if payload.guest_email:
        try:
            await send_payment_initiation(
                email_client,
                email=payload.guest_email,
                guest_name=payload.guest_name,
                item_name=listing.name,
                total_amount=total,
                phone=payload.guest_phone,
            )
        except EmailDeliveryError:
            logger.warning(
                "Payment initiation email failed for booking {}", booking.id, exc_info=True
            )

    return BookingSubmitted(
        booking=booking,
        payment=attached or payment,
        customer_message=stk.get("CustomerMessage"),
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> BookingResponse:
    return await _visible_booking(booking_id, current_user)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    # No ownership filter here; _assert_transition checks who may act
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    _assert_transition(
        old_status=booking.status,
        new_status=payload.status,
        booking_user_id=booking.user_id,
        booking_host_id=booking.host_id,
        current_user=current_user,
    )

    updated = await booking_crud.update_booking_status(booking_id, payload.status)
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    await invalidate_availability_cache(booking.item_id)
    return updated


@router.get("/{booking_id}/reschedule", response_model=RescheduleOptions)
async def get_reschedule_options(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_reschedule_booking),
    now: datetime = Depends(get_now),
) -> RescheduleOptions:
    booking, listing = await _own_booking_and_listing(booking_id, current_user)
    flow = await _reschedule_flow(booking, listing, now)
    today = local_today(now)
    return RescheduleOptions(
        booking_id=booking.id,
        eligible=flow.state != RescheduleState.INELIGIBLE,
        reason=flow.eligibility.reason,
        is_new_schedule=flow.is_new_schedule,
        current_date=booking.visit_date,
        working_days=flow.working_days,
        capacity=flow.capacity,
        earliest_date=earliest_date(now),
        fully_booked_dates=sorted(d for d in flow.fully_booked if d >= today),
    )


@router.post("/{booking_id}/reschedule", response_model=RescheduleResult)
async def reschedule_booking(
    booking_id: UUID,
    payload: RescheduleCreate,
    current_user: CurrentUser = Depends(can_reschedule_booking),
    now: datetime = Depends(get_now),
) -> RescheduleResult:
    booking, listing = await _own_booking_and_listing(booking_id, current_user)
    flow = await _reschedule_flow(booking, listing, now)

    if flow.state == RescheduleState.INELIGIBLE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=flow.eligibility.reason
        )
    try:
        flow.select(payload.visit_date)
    except DateNotSelectable as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from None
    except RescheduleError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from None

    new_date = flow.submit()
    try:
        updated, old_date = await booking_crud.reschedule_booking(
            booking.id,
            current_user.id,
            new_date,
            flow.notification(item_name(booking.booking_details)),
        )
    except HTTPException as exc:
        flow.fail(str(exc.detail))
        logger.info("Reschedule of {} failed: {}", booking.id, exc.detail)
        raise
    flow.succeed()

    await invalidate_availability_cache(booking.item_id)
    return RescheduleResult(
        booking=updated, state=flow.state, old_date=old_date, new_date=new_date
    )


@router.get("/{booking_id}/ticket")
async def download_ticket(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> Response:
    booking = await _visible_booking(booking_id, current_user)
    if booking.status != BookingStatus.ACTIVE or not has_ticket(booking):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Tickets are available once payment is confirmed",
        )
    filename = f"Booking_{booking_reference(booking)}.pdf"
    return Response(
        content=render_ticket_pdf(booking),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
