"""
Reschedule eligibility and candidate-date filtering.

A reschedule moves through:

    eligible -> date_selected -> submitted -> succeeded | failed
    ineligible (terminal, carries the reason shown to the guest)

RescheduleFlow enforces that order; the router drives it and the CRUD layer
performs the actual write between submit() and succeed()/fail().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import StrEnum
from uuid import UUID
from zoneinfo import ZoneInfo

from travel_bookings import settings
from travel_bookings.models import BookingStatus, ListingType
from travel_bookings.rules import exceeds_capacity, is_open_on


class RescheduleState(StrEnum):
    INELIGIBLE = "ineligible"
    ELIGIBLE = "eligible"
    DATE_SELECTED = "date_selected"
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[RescheduleState, set[RescheduleState]] = {
    RescheduleState.INELIGIBLE: set(),
    RescheduleState.ELIGIBLE: {RescheduleState.DATE_SELECTED},
    RescheduleState.DATE_SELECTED: {
        RescheduleState.DATE_SELECTED,
        RescheduleState.SUBMITTED,
    },
    RescheduleState.SUBMITTED: {RescheduleState.SUCCEEDED, RescheduleState.FAILED},
    RescheduleState.SUCCEEDED: set(),
    RescheduleState.FAILED: set(),
}

EVENT_REASON = "Events with fixed dates cannot be rescheduled."
FIXED_TRIP_REASON = "This trip has a fixed date and cannot be rescheduled."
NOTICE_REASON = (
    "Bookings cannot be rescheduled within {hours} hours of the scheduled date."
)
INACTIVE_REASON = "Cancelled or rejected bookings cannot be rescheduled."


class RescheduleError(Exception):
    pass


class InvalidTransition(RescheduleError):
    pass


class DateNotSelectable(RescheduleError):
    pass


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str | None = None


def _tz() -> ZoneInfo:
    return ZoneInfo(settings.bookings_tz)


def visit_start(day: date) -> datetime:
    """Midnight at the start of a visit date, in the bookings timezone."""
    return datetime.combine(day, time.min, tzinfo=_tz())


def local_today(now: datetime) -> date:
    return now.astimezone(_tz()).date()


def check_eligibility(
    booking_type: ListingType,
    visit_date: date | None,
    now: datetime,
    *,
    is_flexible_date: bool = False,
    is_custom_date: bool = False,
    status: BookingStatus = BookingStatus.ACTIVE,
    notice_hours: int | None = None,
) -> Eligibility:
    if notice_hours is None:
        notice_hours = settings.reschedule_notice_hours

    if status != BookingStatus.ACTIVE:
        return Eligibility(False, INACTIVE_REASON)
    if booking_type == ListingType.EVENT:
        return Eligibility(False, EVENT_REASON)
    if booking_type == ListingType.TRIP and not (is_flexible_date or is_custom_date):
        return Eligibility(False, FIXED_TRIP_REASON)
    if visit_date is not None:
        if visit_start(visit_date) - now < timedelta(hours=notice_hours):
            return Eligibility(False, NOTICE_REASON.format(hours=notice_hours))
    return Eligibility(True)


def fully_booked_dates(
    booked_by_date: dict[date, int],
    slots: int,
    capacity: int | None,
) -> set[date]:
    """Dates that cannot take `slots` more guests. Unlimited capacity → none."""
    return {
        day
        for day, booked in booked_by_date.items()
        if exceeds_capacity(booked, slots, capacity)
    }


def earliest_date(now: datetime, notice_hours: int | None = None) -> date:
    """First visit date that still respects the advance-notice window."""
    if notice_hours is None:
        notice_hours = settings.reschedule_notice_hours
    day = local_today(now)
    while visit_start(day) - now < timedelta(hours=notice_hours):
        day += timedelta(days=1)
    return day


def unselectable_reason(
    day: date,
    now: datetime,
    working_days: list[str],
    fully_booked: set[date],
    notice_hours: int | None = None,
) -> str | None:
    if notice_hours is None:
        notice_hours = settings.reschedule_notice_hours
    if day < local_today(now):
        return "Selected date is in the past"
    if day < earliest_date(now, notice_hours):
        return f"Select a date at least {notice_hours} hours in advance"
    if not is_open_on(day, working_days):
        return "Selected date is not a working day"
    if day in fully_booked:
        return "Selected date is fully booked"
    return None


def is_date_selectable(
    day: date,
    now: datetime,
    working_days: list[str],
    fully_booked: set[date],
    notice_hours: int | None = None,
) -> bool:
    return unselectable_reason(day, now, working_days, fully_booked, notice_hours) is None


@dataclass
class RescheduleFlow:
    booking_id: UUID
    current_date: date | None
    slots: int
    working_days: list[str]
    capacity: int | None
    booked_by_date: dict[date, int]
    now: datetime
    eligibility: Eligibility
    state: RescheduleState = field(init=False)
    selected_date: date | None = field(default=None, init=False)
    failure_reason: str | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.state = (
            RescheduleState.ELIGIBLE
            if self.eligibility.eligible
            else RescheduleState.INELIGIBLE
        )

    @property
    def is_new_schedule(self) -> bool:
        """No visit date yet: the guest is setting it rather than moving it."""
        return self.current_date is None

    @property
    def fully_booked(self) -> set[date]:
        return fully_booked_dates(self.booked_by_date, self.slots, self.capacity)

    def _move(self, new_state: RescheduleState) -> None:
        if new_state not in _VALID_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Cannot transition from '{self.state}' to '{new_state}'"
            )
        self.state = new_state

    def select(self, day: date) -> None:
        if self.state == RescheduleState.INELIGIBLE:
            raise InvalidTransition(self.eligibility.reason or "Not reschedulable")
        reason = unselectable_reason(
            day, self.now, self.working_days, self.fully_booked
        )
        if reason is not None:
            raise DateNotSelectable(reason)
        self._move(RescheduleState.DATE_SELECTED)
        self.selected_date = day

    def submit(self) -> date:
        self._move(RescheduleState.SUBMITTED)
        assert self.selected_date is not None
        return self.selected_date

    def succeed(self) -> None:
        self._move(RescheduleState.SUCCEEDED)

    def fail(self, reason: str) -> None:
        self._move(RescheduleState.FAILED)
        self.failure_reason = reason

    def notification(self, item: str) -> dict:
        """In-app notification payload for a successful reschedule."""
        assert self.selected_date is not None
        pretty = self.selected_date.strftime("%B %d, %Y")
        if self.is_new_schedule:
            return {
                "type": "visit_date_set",
                "title": "Visit Date Set",
                "message": f"Your visit date for {item} has been set to {pretty}.",
            }
        return {
            "type": "booking_rescheduled",
            "title": "Booking Rescheduled",
            "message": f"Your booking for {item} has been moved to {pretty}.",
        }
