from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import HTTPException, status
from loguru import logger
from tortoise.transactions import in_transaction

from travel_bookings.models import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    Listing,
    MpesaCallbackLog,
    Notification,
    PaymentStatus,
    PendingPayment,
    Profile,
    RescheduleLog,
    SavedItem,
)
from travel_bookings.payments import StkCallbackResult
from travel_bookings.rules import exceeds_capacity, listing_snapshot
from travel_bookings.schemas import (
    BookingCreate,
    BookingFilters,
    BookingResponse,
    ListingCreate,
    ListingFilters,
    ListingResponse,
    NotificationResponse,
    PendingPaymentResponse,
    SavedItemResponse,
)

# Bookings that hold capacity on their visit date
_ACTIVE = [BookingStatus.ACTIVE]


async def _lock_listing(listing_id: UUID) -> Listing:
    """SELECT ... FOR UPDATE on the listing; serializes capacity checks per listing."""
    listing = await Listing.filter(id=listing_id).select_for_update().first()
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found"
        )
    return listing


async def _booked_on(
    item_id: UUID, visit_date: date, exclude_id: UUID | None = None
) -> int:
    qs = Booking.filter(item_id=item_id, visit_date=visit_date, status__in=_ACTIVE)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    rows = await qs.values_list("slots_booked", flat=True)
    return sum(slots or 1 for slots in rows)


class ListingCRUD:
    async def list_listings(self, filters: ListingFilters) -> list[ListingResponse]:
        qs = Listing.filter(approval_status=ApprovalStatus.APPROVED, is_hidden=False)
        if filters.listing_type is not None:
            qs = qs.filter(listing_type=filters.listing_type)
        if filters.location:
            qs = qs.filter(location__icontains=filters.location)

        offset = (filters.page - 1) * filters.page_size
        listings = await qs.offset(offset).limit(filters.page_size)
        return [ListingResponse.model_validate(x, from_attributes=True) for x in listings]

    async def get_listing(self, listing_id: UUID) -> ListingResponse | None:
        inst = await Listing.get_or_none(id=listing_id)
        if not inst:
            return None
        return ListingResponse.model_validate(inst, from_attributes=True)

    async def create_listing(
        self, host_id: UUID, payload: ListingCreate
    ) -> ListingResponse:
        inst = await Listing.create(host_id=host_id, **payload.model_dump())
        logger.info("Listing created: id={} host_id={}", inst.id, host_id)
        return ListingResponse.model_validate(inst, from_attributes=True)

    async def set_approval(
        self, listing_id: UUID, approval_status: ApprovalStatus
    ) -> ListingResponse | None:
        inst = await Listing.get_or_none(id=listing_id)
        if not inst:
            return None
        inst.approval_status = approval_status  # type: ignore
        await inst.save(update_fields=["approval_status", "updated_at"])
        return ListingResponse.model_validate(inst, from_attributes=True)


class BookingCRUD:
    async def booked_slots_by_date(
        self, item_id: UUID, exclude_id: UUID | None = None
    ) -> dict[date, int]:
        """Summed slots of active bookings per visit date for one listing."""
        qs = Booking.filter(
            item_id=item_id, status__in=_ACTIVE, visit_date__isnull=False
        )
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        totals: dict[date, int] = defaultdict(int)
        for row in await qs.values("visit_date", "slots_booked"):
            totals[row["visit_date"]] += row["slots_booked"] or 1
        return dict(totals)

    async def create_booking(
        self,
        listing: ListingResponse,
        user_id: UUID,
        payload: BookingCreate,
        visit_date: date | None,
        total_amount: Decimal,
    ) -> tuple[BookingResponse, PendingPaymentResponse]:
        """
        Persist a booking and its pending payment.

        The capacity check and the insert run in one transaction holding a
        row lock on the listing, so concurrent submissions for the same
        listing cannot overbook a date.
        """
        slots = payload.slots_booked
        async with in_transaction():
            locked = await _lock_listing(listing.id)
            if visit_date is not None:
                booked = await _booked_on(listing.id, visit_date)
                if exceeds_capacity(booked, slots, locked.capacity):
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail=(
                            f"Only {max(locked.capacity - booked, 0)} slot(s) left "
                            f"on {visit_date.isoformat()}"
                        ),
                    )

            booking = await Booking.create(
                item_id=listing.id,
                booking_type=listing.listing_type,
                user_id=user_id,
                host_id=listing.host_id,
                guest_name=payload.guest_name,
                guest_email=payload.guest_email,
                guest_phone=payload.guest_phone,
                visit_date=visit_date,
                slots_booked=slots,
                total_amount=total_amount,
                booking_details=listing_snapshot(listing),
            )
            payment = await PendingPayment.create(
                booking_id=booking.id,
                user_id=user_id,
                phone_number=payload.guest_phone,
                amount=total_amount,
                booking_data={
                    "booking_type": str(listing.listing_type),
                    "item_id": str(listing.id),
                    "guest_name": payload.guest_name,
                    "guest_email": payload.guest_email,
                    "guest_phone": payload.guest_phone,
                    "visit_date": visit_date.isoformat() if visit_date else None,
                    "slots_booked": slots,
                    "booking_details": booking.booking_details,
                },
            )

        logger.info(
            "Booking created: id={} item_id={} slots={} visit_date={}",
            booking.id,
            listing.id,
            slots,
            visit_date,
        )
        return (
            BookingResponse.model_validate(booking, from_attributes=True),
            PendingPaymentResponse.model_validate(payment, from_attributes=True),
        )

    async def get_booking(
        self,
        booking_id: UUID,
        user_id: UUID | None = None,
        host_id: UUID | None = None,
    ) -> BookingResponse | None:
        if user_id is not None:
            inst = await Booking.get_or_none(id=booking_id, user_id=user_id)
        elif host_id is not None:
            inst = await Booking.get_or_none(id=booking_id, host_id=host_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def list_bookings(
        self,
        filters: BookingFilters,
        user_id: UUID | None = None,
        host_id: UUID | None = None,
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        if host_id is not None:
            qs = qs.filter(host_id=host_id)
        if filters.item_id is not None:
            qs = qs.filter(item_id=filters.item_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)
        if filters.payment_status is not None:
            qs = qs.filter(payment_status=filters.payment_status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.offset(offset).limit(filters.page_size)

        bookings = await qs
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def update_booking_status(
        self, booking_id: UUID, new_status: BookingStatus
    ) -> BookingResponse | None:
        inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            return None
        inst.status = new_status  # type: ignore
        fields = ["status", "updated_at"]
        if inst.payment_status == PaymentStatus.PENDING:
            inst.payment_status = PaymentStatus.CANCELLED  # type: ignore
            fields.append("payment_status")
        await inst.save(update_fields=fields)
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def reschedule_booking(
        self,
        booking_id: UUID,
        actor_id: UUID,
        new_date: date,
        notification: dict,
    ) -> tuple[BookingResponse, date | None]:
        """
        Move a booking to `new_date`, re-checking capacity under the listing
        lock. Writes a reschedule log row when a previous date existed and an
        in-app notification for the guest. Returns (booking, old_date).
        """
        async with in_transaction():
            inst = await Booking.get_or_none(id=booking_id)
            if not inst:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
                )
            locked = await _lock_listing(inst.item_id)
            booked = await _booked_on(inst.item_id, new_date, exclude_id=inst.id)
            if exceeds_capacity(booked, inst.slots_booked or 1, locked.capacity):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Selected date is fully booked",
                )

            old_date = inst.visit_date
            inst.visit_date = new_date  # type: ignore
            await inst.save(update_fields=["visit_date", "updated_at"])

            if old_date is not None:
                await RescheduleLog.create(
                    booking_id=inst.id,
                    user_id=actor_id,
                    old_date=old_date,
                    new_date=new_date,
                )
            await Notification.create(
                user_id=inst.user_id,
                data={
                    "booking_id": str(inst.id),
                    "old_date": old_date.isoformat() if old_date else None,
                    "new_date": new_date.isoformat(),
                },
                **notification,
            )

        logger.info(
            "Booking rescheduled: id={} {} -> {}", booking_id, old_date, new_date
        )
        return BookingResponse.model_validate(inst, from_attributes=True), old_date


class PaymentCRUD:
    async def get_payment(
        self, payment_id: UUID, user_id: UUID | None = None
    ) -> PendingPaymentResponse | None:
        if user_id is not None:
            inst = await PendingPayment.get_or_none(id=payment_id, user_id=user_id)
        else:
            inst = await PendingPayment.get_or_none(id=payment_id)
        if not inst:
            return None
        return PendingPaymentResponse.model_validate(inst, from_attributes=True)

    async def list_payments(
        self, user_id: UUID, statuses: list[PaymentStatus]
    ) -> list[PendingPaymentResponse]:
        payments = await PendingPayment.filter(
            user_id=user_id, payment_status__in=statuses
        )
        return [
            PendingPaymentResponse.model_validate(p, from_attributes=True)
            for p in payments
        ]

    async def attach_checkout(
        self,
        payment_id: UUID,
        checkout_request_id: str,
        merchant_request_id: str | None,
    ) -> PendingPaymentResponse | None:
        """Record the gateway's ids for an STK push and (re)open the payment."""
        inst = await PendingPayment.get_or_none(id=payment_id)
        if not inst:
            return None
        inst.checkout_request_id = checkout_request_id  # type: ignore
        inst.merchant_request_id = merchant_request_id  # type: ignore
        inst.payment_status = PaymentStatus.PENDING  # type: ignore
        inst.result_code = None  # type: ignore
        inst.result_desc = None  # type: ignore
        await inst.save()
        await Booking.filter(id=inst.booking_id).update(
            payment_status=PaymentStatus.PENDING
        )
        return PendingPaymentResponse.model_validate(inst, from_attributes=True)

    async def mark_initiation_failed(self, payment_id: UUID, reason: str) -> None:
        """The STK push never reached the guest; leave the rows retryable."""
        inst = await PendingPayment.get_or_none(id=payment_id)
        if not inst:
            return
        inst.payment_status = PaymentStatus.FAILED  # type: ignore
        inst.result_desc = reason[:1000]  # type: ignore
        await inst.save(update_fields=["payment_status", "result_desc", "updated_at"])
        await Booking.filter(id=inst.booking_id).update(
            payment_status=PaymentStatus.FAILED
        )

    async def apply_callback(
        self, result: StkCallbackResult
    ) -> tuple[PendingPaymentResponse, BookingResponse | None] | None:
        """
        Apply a gateway result to the payment matched by checkout_request_id
        and mirror it onto the booking. Last write wins on repeated callbacks.
        Returns None when no payment carries that checkout id.
        """
        async with in_transaction():
            inst = await PendingPayment.get_or_none(
                checkout_request_id=result.checkout_request_id
            )
            if not inst:
                return None

            inst.payment_status = result.payment_status  # type: ignore
            inst.result_code = result.result_code  # type: ignore
            inst.result_desc = result.result_desc  # type: ignore
            inst.mpesa_receipt_number = result.receipt_number  # type: ignore
            await inst.save()

            booking = await Booking.get_or_none(id=inst.booking_id)
            if booking is not None:
                booking.payment_status = (  # type: ignore
                    PaymentStatus.PAID if result.succeeded else PaymentStatus.FAILED
                )
                await booking.save(update_fields=["payment_status", "updated_at"])

        return (
            PendingPaymentResponse.model_validate(inst, from_attributes=True),
            None
            if booking is None
            else BookingResponse.model_validate(booking, from_attributes=True),
        )

    async def log_callback(
        self, result: StkCallbackResult | None, raw_payload: object
    ) -> None:
        await MpesaCallbackLog.create(
            checkout_request_id=result.checkout_request_id if result else None,
            merchant_request_id=result.merchant_request_id if result else None,
            result_code=result.result_code if result else None,
            result_desc=result.result_desc if result else None,
            raw_payload=raw_payload,
        )


class SavedItemCRUD:
    async def list_saved(
        self, user_id: UUID, page: int = 1, page_size: int = 20
    ) -> list[SavedItemResponse]:
        offset = (page - 1) * page_size
        items = await SavedItem.filter(user_id=user_id).offset(offset).limit(page_size)
        return [SavedItemResponse.model_validate(i, from_attributes=True) for i in items]

    async def save_item(
        self, user_id: UUID, item_id: UUID, item_type: str
    ) -> tuple[SavedItemResponse, bool]:
        inst, created = await SavedItem.get_or_create(
            user_id=user_id, item_id=item_id, defaults={"item_type": item_type}
        )
        return SavedItemResponse.model_validate(inst, from_attributes=True), created

    async def remove_item(self, user_id: UUID, item_id: UUID) -> bool:
        deleted = await SavedItem.filter(user_id=user_id, item_id=item_id).delete()
        return deleted > 0


class NotificationCRUD:
    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False
    ) -> list[NotificationResponse]:
        qs = Notification.filter(user_id=user_id)
        if unread_only:
            qs = qs.filter(is_read=False)
        return [
            NotificationResponse.model_validate(n, from_attributes=True)
            for n in await qs.limit(100)
        ]

    async def mark_read(
        self, notification_id: UUID, user_id: UUID
    ) -> NotificationResponse | None:
        inst = await Notification.get_or_none(id=notification_id, user_id=user_id)
        if not inst:
            return None
        inst.is_read = True  # type: ignore
        await inst.save(update_fields=["is_read"])
        return NotificationResponse.model_validate(inst, from_attributes=True)


class ProfileCRUD:
    async def get_contact(self, profile_id: UUID) -> dict | None:
        inst = await Profile.get_or_none(id=profile_id)
        if not inst:
            return None
        return {"email": inst.email, "name": inst.name}


listing_crud = ListingCRUD()
booking_crud = BookingCRUD()
payment_crud = PaymentCRUD()
saved_item_crud = SavedItemCRUD()
notification_crud = NotificationCRUD()
profile_crud = ProfileCRUD()
