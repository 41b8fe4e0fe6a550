from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from travel_bookings.models import (
    ApprovalStatus,
    BookingStatus,
    ListingType,
    PaymentStatus,
)
from travel_bookings.payments import normalize_msisdn

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class ListingCreate(BaseModel):
    listing_type: ListingType
    name: str = Field(min_length=1, max_length=255)
    location: str | None = Field(default=None, max_length=255)
    country: str | None = Field(default=None, max_length=100)
    image_url: str | None = None
    price: Decimal = Field(ge=0)
    child_price: Decimal | None = Field(default=None, ge=0)
    capacity: int | None = Field(default=None, ge=0)
    days_opened: list[str] = Field(default_factory=list)
    opening_hours: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    closing_hours: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    fixed_date: date | None = None
    is_flexible_date: bool = False
    is_custom_date: bool = False

    @field_validator("days_opened", mode="after")
    @classmethod
    def normalize_days(cls, v: list[str]) -> list[str]:
        days = []
        for day in v:
            name = day.strip().capitalize()
            if name not in WEEKDAYS:
                raise ValueError(f"unknown weekday: {day!r}")
            if name not in days:
                days.append(name)
        return days

    @model_validator(mode="after")
    def require_event_date(self) -> ListingCreate:
        if self.listing_type == ListingType.EVENT and self.fixed_date is None:
            raise ValueError("events must have a fixed_date")
        return self


class ListingResponse(BaseModel):
    id: UUID
    host_id: UUID
    listing_type: ListingType
    name: str
    location: str | None
    country: str | None
    image_url: str | None
    price: Decimal
    child_price: Decimal | None
    capacity: int | None
    days_opened: list[str]
    opening_hours: str | None
    closing_hours: str | None
    fixed_date: date | None
    is_flexible_date: bool
    is_custom_date: bool
    approval_status: ApprovalStatus
    is_hidden: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ListingApprovalUpdate(BaseModel):
    approval_status: ApprovalStatus


class ListingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(ListingFilters)."""

    listing_type: ListingType | None = None
    location: str | None = None

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class Availability(BaseModel):
    """Per-date booked slot totals, without guest identity."""

    listing_id: UUID
    capacity: int | None
    days_opened: list[str]
    booked_slots: dict[date, int]


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingCreate(BaseModel):
    item_id: UUID
    guest_name: str = Field(max_length=255)
    guest_email: str | None = Field(default=None, max_length=255)
    guest_phone: str = Field(max_length=32)
    visit_date: date | None = None
    adults: int = Field(default=1, ge=0, le=100)
    children: int = Field(default=0, ge=0, le=100)

    @field_validator("guest_name", "guest_phone", mode="after")
    @classmethod
    def require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("guest_phone", mode="after")
    @classmethod
    def check_phone(cls, v: str) -> str:
        # M-Pesa prompts go to this number, so it is stored in Daraja form.
        return normalize_msisdn(v)

    @field_validator("guest_email", mode="after")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if "@" not in v:
            raise ValueError("invalid email address")
        return v

    @model_validator(mode="after")
    def require_slots(self) -> BookingCreate:
        if self.slots_booked < 1:
            raise ValueError("at least one guest is required")
        return self

    @property
    def slots_booked(self) -> int:
        return self.adults + self.children


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    id: UUID
    item_id: UUID
    booking_type: ListingType
    user_id: UUID
    host_id: UUID
    guest_name: str
    guest_email: str | None
    guest_phone: str
    visit_date: date | None
    slots_booked: int
    total_amount: Decimal
    payment_status: PaymentStatus
    status: BookingStatus
    booking_details: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    item_id: UUID | None = None
    status: BookingStatus | None = None
    payment_status: PaymentStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class PendingPaymentResponse(BaseModel):
    id: UUID
    booking_id: UUID
    user_id: UUID
    checkout_request_id: str | None
    merchant_request_id: str | None
    phone_number: str
    amount: Decimal
    payment_status: PaymentStatus
    result_code: str | None
    result_desc: str | None
    mpesa_receipt_number: str | None
    booking_data: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingSubmitted(BaseModel):
    booking: BookingResponse
    payment: PendingPaymentResponse
    customer_message: str | None = None


# ---------------------------------------------------------------------------
# Reschedule
# ---------------------------------------------------------------------------


class RescheduleOptions(BaseModel):
    booking_id: UUID
    eligible: bool
    reason: str | None = None
    is_new_schedule: bool
    current_date: date | None
    working_days: list[str]
    capacity: int | None
    earliest_date: date
    fully_booked_dates: list[date]


class RescheduleCreate(BaseModel):
    visit_date: date


class RescheduleResult(BaseModel):
    booking: BookingResponse
    state: str
    old_date: date | None
    new_date: date


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class HostNotificationRequest(BaseModel):
    host_id: UUID = Field(alias="hostId")
    booking_id: UUID = Field(alias="bookingId")
    guest_name: str = Field(alias="guestName")
    item_name: str = Field(alias="itemName")
    total_amount: Decimal = Field(alias="totalAmount")
    visit_date: date | None = Field(default=None, alias="visitDate")

    model_config = ConfigDict(populate_by_name=True)


class PaymentInitiationRequest(BaseModel):
    email: str
    guest_name: str = Field(alias="guestName")
    item_name: str = Field(alias="itemName")
    total_amount: Decimal = Field(alias="totalAmount")
    phone: str

    model_config = ConfigDict(populate_by_name=True)


class NotificationResponse(BaseModel):
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    data: dict[str, Any]
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Saved items
# ---------------------------------------------------------------------------


class SavedItemCreate(BaseModel):
    item_id: UUID
    item_type: ListingType


class SavedItemResponse(BaseModel):
    item_id: UUID
    item_type: ListingType
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

