"""
Booking input rules shared by submission and reschedule.

Everything here is pure: callers pass the listing (model or response schema)
and the current date, nothing touches the database.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from travel_bookings.models import ApprovalStatus, ListingType


class BookingRuleError(ValueError):
    """A booking request that breaks a listing rule."""


def weekday_name(day: date) -> str:
    return day.strftime("%A")


def is_bookable(listing: Any) -> bool:
    return listing.approval_status == ApprovalStatus.APPROVED and not listing.is_hidden


def is_date_fixed(listing: Any) -> bool:
    """Events always run on their own date; trips do unless flexible/custom."""
    if listing.listing_type == ListingType.EVENT:
        return True
    if listing.listing_type == ListingType.TRIP:
        return not (listing.is_flexible_date or listing.is_custom_date)
    return False


def is_open_on(day: date, days_opened: list[str]) -> bool:
    """An empty working-day list means open every day."""
    return not days_opened or weekday_name(day) in days_opened


def compute_total(listing: Any, adults: int, children: int) -> Decimal:
    child_price = (
        listing.child_price if listing.child_price is not None else listing.price
    )
    total = Decimal(listing.price) * adults + Decimal(child_price) * children
    return total.quantize(Decimal("0.01"))


def resolve_visit_date(listing: Any, requested: date | None) -> date | None:
    """
    Pick the visit date a new booking is stored with.

      - date-fixed listings use their own fixed_date (the request is ignored)
      - flexible / custom-date trips may leave the date open for later
      - everything else needs a requested date
    """
    if is_date_fixed(listing):
        if listing.fixed_date is None:
            raise BookingRuleError("This listing has no scheduled date yet")
        return listing.fixed_date

    if requested is None:
        if listing.is_flexible_date or listing.is_custom_date:
            return None
        raise BookingRuleError("A visit date is required for this listing")
    return requested


def check_visit_date(
    listing: Any,
    visit_date: date | None,
    today: date,
) -> None:
    """Raise BookingRuleError if the visit date cannot be booked."""
    if visit_date is None:
        return
    if visit_date < today:
        raise BookingRuleError("Visit date is in the past")
    if is_date_fixed(listing):
        # fixed dates are set by the host, working days do not apply
        return
    if not is_open_on(visit_date, listing.days_opened or []):
        raise BookingRuleError(
            f"{listing.name} is closed on {weekday_name(visit_date)}s"
        )


def exceeds_capacity(booked: int, requested: int, capacity: int | None) -> bool:
    if capacity is None:
        return False
    return booked + requested > capacity


def listing_snapshot(listing: Any) -> dict:
    """Frozen copy of the listing stored on the booking as booking_details."""
    name_key = {
        ListingType.TRIP: "trip_name",
        ListingType.EVENT: "event_name",
        ListingType.HOTEL: "hotel_name",
        ListingType.ADVENTURE_PLACE: "place_name",
    }[ListingType(listing.listing_type)]
    return {
        name_key: listing.name,
        "item_name": listing.name,
        "listing_type": str(listing.listing_type),
        "location": listing.location,
        "price": str(listing.price),
        "child_price": None if listing.child_price is None else str(listing.child_price),
        "fixed_date": None if listing.fixed_date is None else listing.fixed_date.isoformat(),
    }


def item_name(booking_details: dict) -> str:
    for key in ("trip_name", "event_name", "hotel_name", "place_name", "item_name"):
        if booking_details.get(key):
            return booking_details[key]
    return "Your booking"
