"""
CRUD layer against a real (in-memory sqlite) database.

Each test runs its scenario inside a fresh Tortoise setup so the capacity
checks, the reschedule bookkeeping and the callback updates are exercised
through the ORM rather than through mocks.
"""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi import HTTPException
from tortoise import Tortoise

from travel_bookings.crud import booking_crud, listing_crud, payment_crud
from travel_bookings.main import TORTOISE_MODULES
from travel_bookings.models import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    Listing,
    MpesaCallbackLog,
    Notification,
    PaymentStatus,
    PendingPayment,
    RescheduleLog,
)
from travel_bookings.payments import parse_stk_callback
from travel_bookings.schemas import BookingCreate

from .factories import (
    CHECKOUT_ID,
    CUSTOMER_ID,
    HOST_ID,
    MERCHANT_ID,
    VISIT_DATE,
    stk_callback_payload,
)

OTHER_DATE = date(2026, 6, 11)

RESCHEDULED = {
    "type": "booking_rescheduled",
    "title": "Booking Rescheduled",
    "message": "Your booking has been moved.",
}


def _with_db(scenario):
    async def _run():
        await Tortoise.init(db_url="sqlite://:memory:", modules=TORTOISE_MODULES)
        await Tortoise.generate_schemas()
        try:
            return await scenario()
        finally:
            await Tortoise.close_connections()

    return asyncio.run(_run())


async def _listing(capacity: int | None = 10):
    inst = await Listing.create(
        host_id=HOST_ID,
        listing_type="adventure_place",
        name="Hell's Gate Park",
        price=Decimal("1500.00"),
        child_price=Decimal("800.00"),
        capacity=capacity,
        days_opened=["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"],
        approval_status=ApprovalStatus.APPROVED,
    )
    return await listing_crud.get_listing(inst.id)


async def _book(listing, adults: int, visit_date: date | None = VISIT_DATE):
    payload = BookingCreate(
        item_id=listing.id,
        guest_name="Wanjiku Kamau",
        guest_phone="0712345678",
        adults=adults,
    )
    return await booking_crud.create_booking(
        listing,
        CUSTOMER_ID,
        payload,
        visit_date,
        Decimal("1500.00") * adults,
    )


# ---------------------------------------------------------------------------
# create_booking
# ---------------------------------------------------------------------------


class TestCreateBooking:
    def test_persists_booking_and_pending_payment(self):
        async def scenario():
            listing = await _listing()
            booking, payment = await _book(listing, 3)
            stored = await PendingPayment.get(id=payment.id)
            return booking, stored

        booking, payment = _with_db(scenario)
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.status == BookingStatus.ACTIVE
        assert booking.slots_booked == 3
        assert booking.guest_phone == "254712345678"
        assert str(payment.booking_id) == str(booking.id)
        assert payment.phone_number == "254712345678"
        assert payment.amount == Decimal("4500.00")

    def test_capacity_blocks_overbooking_of_a_date(self):
        async def scenario():
            listing = await _listing(capacity=10)
            await _book(listing, 4)
            await _book(listing, 5)
            with pytest.raises(HTTPException) as exc_info:
                await _book(listing, 2)
            last, _ = await _book(listing, 1)
            total = await booking_crud.booked_slots_by_date(listing.id)
            count = await Booking.filter(item_id=listing.id).count()
            return exc_info.value, last, total, count

        exc, last, total, count = _with_db(scenario)
        assert exc.status_code == 409
        assert "1 slot(s) left" in exc.detail
        assert last.slots_booked == 1
        assert total == {VISIT_DATE: 10}
        assert count == 3

    def test_other_dates_do_not_count(self):
        async def scenario():
            listing = await _listing(capacity=5)
            await _book(listing, 5, visit_date=OTHER_DATE)
            booking, _ = await _book(listing, 5)
            return booking

        assert _with_db(scenario).visit_date == VISIT_DATE

    def test_cancelled_bookings_release_capacity(self):
        async def scenario():
            listing = await _listing(capacity=5)
            first, _ = await _book(listing, 5)
            await booking_crud.update_booking_status(first.id, BookingStatus.CANCELLED)
            second, _ = await _book(listing, 5)
            cancelled = await Booking.get(id=first.id)
            return cancelled, second

        cancelled, second = _with_db(scenario)
        assert cancelled.payment_status == PaymentStatus.CANCELLED
        assert second.slots_booked == 5

    def test_unlimited_capacity(self):
        async def scenario():
            listing = await _listing(capacity=None)
            for _ in range(3):
                await _book(listing, 50)
            return await booking_crud.booked_slots_by_date(listing.id)

        assert _with_db(scenario) == {VISIT_DATE: 150}


# ---------------------------------------------------------------------------
# reschedule_booking
# ---------------------------------------------------------------------------


class TestRescheduleBooking:
    def test_moves_date_and_writes_log_and_notification(self):
        async def scenario():
            listing = await _listing()
            booking, _ = await _book(listing, 3)
            moved, old = await booking_crud.reschedule_booking(
                booking.id, CUSTOMER_ID, OTHER_DATE, RESCHEDULED
            )
            logs = await RescheduleLog.filter(booking_id=booking.id)
            notes = await Notification.filter(user_id=CUSTOMER_ID)
            return moved, old, logs, notes

        moved, old, logs, notes = _with_db(scenario)
        assert moved.visit_date == OTHER_DATE
        assert old == VISIT_DATE
        assert len(logs) == 1
        assert logs[0].old_date == VISIT_DATE
        assert logs[0].new_date == OTHER_DATE
        assert str(logs[0].user_id) == str(CUSTOMER_ID)
        assert len(notes) == 1
        assert notes[0].type == "booking_rescheduled"
        assert notes[0].data["new_date"] == OTHER_DATE.isoformat()

    def test_no_log_row_without_a_previous_date(self):
        async def scenario():
            listing = await _listing()
            booking, _ = await _book(listing, 2, visit_date=None)
            moved, old = await booking_crud.reschedule_booking(
                booking.id, CUSTOMER_ID, OTHER_DATE, RESCHEDULED
            )
            logs = await RescheduleLog.all().count()
            notes = await Notification.all().count()
            return moved, old, logs, notes

        moved, old, logs, notes = _with_db(scenario)
        assert moved.visit_date == OTHER_DATE
        assert old is None
        assert logs == 0
        assert notes == 1

    def test_full_target_date_is_refused_and_nothing_changes(self):
        async def scenario():
            listing = await _listing(capacity=10)
            await _book(listing, 9, visit_date=OTHER_DATE)
            booking, _ = await _book(listing, 2)
            with pytest.raises(HTTPException) as exc_info:
                await booking_crud.reschedule_booking(
                    booking.id, CUSTOMER_ID, OTHER_DATE, RESCHEDULED
                )
            stored = await Booking.get(id=booking.id)
            logs = await RescheduleLog.all().count()
            return exc_info.value, stored, logs

        exc, stored, logs = _with_db(scenario)
        assert exc.status_code == 409
        assert stored.visit_date == VISIT_DATE
        assert logs == 0

    def test_own_slots_do_not_count_against_the_same_date(self):
        async def scenario():
            listing = await _listing(capacity=4)
            booking, _ = await _book(listing, 4)
            moved, _ = await booking_crud.reschedule_booking(
                booking.id, CUSTOMER_ID, VISIT_DATE, RESCHEDULED
            )
            return moved

        assert _with_db(scenario).visit_date == VISIT_DATE

    def test_missing_booking_returns_404(self):
        async def scenario():
            with pytest.raises(HTTPException) as exc_info:
                await booking_crud.reschedule_booking(
                    uuid4(), CUSTOMER_ID, OTHER_DATE, RESCHEDULED
                )
            return exc_info.value

        assert _with_db(scenario).status_code == 404


# ---------------------------------------------------------------------------
# Payments: attach_checkout / apply_callback / log_callback
# ---------------------------------------------------------------------------


class TestPaymentCallbacks:
    def test_success_completes_payment_and_marks_booking_paid(self):
        async def scenario():
            listing = await _listing()
            booking, payment = await _book(listing, 2)
            await payment_crud.attach_checkout(payment.id, CHECKOUT_ID, MERCHANT_ID)
            result = parse_stk_callback(stk_callback_payload(receipt="QAZ123"))
            applied = await payment_crud.apply_callback(result)
            stored = await PendingPayment.get(id=payment.id)
            stored_booking = await Booking.get(id=booking.id)
            return applied, stored, stored_booking

        applied, payment, booking = _with_db(scenario)
        assert applied is not None
        assert payment.payment_status == PaymentStatus.COMPLETED
        assert payment.mpesa_receipt_number == "QAZ123"
        assert payment.result_code == "0"
        assert booking.payment_status == PaymentStatus.PAID

    def test_last_callback_wins(self):
        async def scenario():
            listing = await _listing()
            booking, payment = await _book(listing, 2)
            await payment_crud.attach_checkout(payment.id, CHECKOUT_ID, MERCHANT_ID)
            await payment_crud.apply_callback(
                parse_stk_callback(stk_callback_payload(receipt="QAZ123"))
            )
            await payment_crud.apply_callback(
                parse_stk_callback(
                    stk_callback_payload(result_code=1032, result_desc="Request cancelled by user")
                )
            )
            stored = await PendingPayment.get(id=payment.id)
            stored_booking = await Booking.get(id=booking.id)
            return stored, stored_booking

        payment, booking = _with_db(scenario)
        assert payment.payment_status == PaymentStatus.FAILED
        assert payment.result_code == "1032"
        assert payment.mpesa_receipt_number is None
        assert booking.payment_status == PaymentStatus.FAILED

    def test_unknown_checkout_id_returns_none(self):
        async def scenario():
            listing = await _listing()
            _, payment = await _book(listing, 2)
            await payment_crud.attach_checkout(payment.id, CHECKOUT_ID, MERCHANT_ID)
            result = parse_stk_callback(
                stk_callback_payload(checkout_request_id="ws_CO_unknown")
            )
            applied = await payment_crud.apply_callback(result)
            stored = await PendingPayment.get(id=payment.id)
            return applied, stored

        applied, payment = _with_db(scenario)
        assert applied is None
        assert payment.payment_status == PaymentStatus.PENDING

    def test_initiation_failure_then_retry_reopens_payment(self):
        async def scenario():
            listing = await _listing()
            booking, payment = await _book(listing, 2)
            await payment_crud.mark_initiation_failed(payment.id, "gateway down")
            failed = await PendingPayment.get(id=payment.id)
            failed_status = failed.payment_status
            reopened = await payment_crud.attach_checkout(
                payment.id, CHECKOUT_ID, MERCHANT_ID
            )
            stored_booking = await Booking.get(id=booking.id)
            return failed_status, failed.result_desc, reopened, stored_booking

        failed_status, reason, reopened, booking = _with_db(scenario)
        assert failed_status == PaymentStatus.FAILED
        assert reason == "gateway down"
        assert reopened.payment_status == PaymentStatus.PENDING
        assert reopened.checkout_request_id == CHECKOUT_ID
        assert booking.payment_status == PaymentStatus.PENDING

    def test_callback_log_keeps_raw_payload(self):
        payload = stk_callback_payload(receipt="QAZ123")

        async def scenario():
            await payment_crud.log_callback(parse_stk_callback(payload), payload)
            await payment_crud.log_callback(None, {"raw": "{not json"})
            return await MpesaCallbackLog.all().order_by("id")

        rows = _with_db(scenario)
        assert rows[0].checkout_request_id == CHECKOUT_ID
        assert rows[0].result_code == "0"
        assert rows[0].raw_payload == payload
        assert rows[1].checkout_request_id is None
        assert rows[1].raw_payload == {"raw": "{not json"}
