from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class ListingType(StrEnum):
    TRIP = "trip"
    EVENT = "event"
    HOTEL = "hotel"
    ADVENTURE_PLACE = "adventure_place"


class ApprovalStatus(StrEnum):
    PENDING = "pending"  # created by a host, hidden from the catalog
    APPROVED = "approved"
    REJECTED = "rejected"


class BookingStatus(StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"  # cancelled by the guest, the host or an admin
    REJECTED = "rejected"  # refused by the host


class PaymentStatus(StrEnum):
    PENDING = "pending"  # STK push sent, waiting for the gateway callback
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TimestampedModel(Model):
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        abstract = True


class Listing(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    host_id = fields.UUIDField()

    listing_type = fields.CharEnumField(ListingType)
    name = fields.CharField(max_length=255)
    location = fields.CharField(max_length=255, null=True)
    country = fields.CharField(max_length=100, null=True)
    image_url = fields.CharField(max_length=1024, null=True)

    price = fields.DecimalField(max_digits=10, decimal_places=2)
    child_price = fields.DecimalField(max_digits=10, decimal_places=2, null=True)
    # tickets / rooms / slots per visit date; null means no limit
    capacity = fields.IntField(null=True)

    days_opened = fields.JSONField(default=list)  # e.g. ["Monday", "Saturday"]
    opening_hours = fields.CharField(max_length=5, null=True)
    closing_hours = fields.CharField(max_length=5, null=True)
    fixed_date = fields.DateField(null=True)  # events and fixed-date trips
    is_flexible_date = fields.BooleanField(default=False)
    is_custom_date = fields.BooleanField(default=False)

    approval_status = fields.CharEnumField(
        ApprovalStatus, default=ApprovalStatus.PENDING
    )
    is_hidden = fields.BooleanField(default=False)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "listings"
        ordering = ["-created_at"]


class Booking(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    item_id = fields.UUIDField(db_index=True)
    booking_type = fields.CharEnumField(ListingType)
    user_id = fields.UUIDField()  # the guest account that booked
    host_id = fields.UUIDField()  # denormalized snapshot from the listing

    guest_name = fields.CharField(max_length=255)
    guest_email = fields.CharField(max_length=255, null=True)
    guest_phone = fields.CharField(max_length=32)

    visit_date = fields.DateField(null=True)
    slots_booked = fields.IntField(default=1)
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2)

    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    status = fields.CharEnumField(BookingStatus, default=BookingStatus.ACTIVE)

    booking_details = fields.JSONField(default=dict)  # listing snapshot
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class PendingPayment(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    booking_id = fields.UUIDField(db_index=True)
    user_id = fields.UUIDField()

    checkout_request_id = fields.CharField(max_length=128, null=True, unique=True)
    merchant_request_id = fields.CharField(max_length=128, null=True)
    phone_number = fields.CharField(max_length=32)
    amount = fields.DecimalField(max_digits=12, decimal_places=2)

    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    result_code = fields.CharField(max_length=16, null=True)
    result_desc = fields.TextField(null=True)
    mpesa_receipt_number = fields.CharField(max_length=64, null=True)

    booking_data = fields.JSONField(default=dict)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "pending_payments"
        ordering = ["-created_at"]


class MpesaCallbackLog(TimestampedModel):
    id = fields.IntField(primary_key=True)
    checkout_request_id = fields.CharField(max_length=128, null=True)
    merchant_request_id = fields.CharField(max_length=128, null=True)
    result_code = fields.CharField(max_length=16, null=True)
    result_desc = fields.TextField(null=True)
    raw_payload = fields.JSONField()

    class Meta:  # type: ignore
        table = "mpesa_callback_log"


class RescheduleLog(TimestampedModel):
    id = fields.IntField(primary_key=True)
    booking_id = fields.UUIDField(db_index=True)
    user_id = fields.UUIDField()
    old_date = fields.DateField()
    new_date = fields.DateField()

    class Meta:  # type: ignore
        table = "reschedule_log"


class SavedItem(TimestampedModel):
    id = fields.IntField(primary_key=True)
    user_id = fields.UUIDField()
    item_id = fields.UUIDField()
    item_type = fields.CharEnumField(ListingType)

    class Meta:  # type: ignore
        table = "saved_items"
        unique_together = (("user_id", "item_id"),)
        ordering = ["-created_at"]


class Profile(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    email = fields.CharField(max_length=255, null=True)
    name = fields.CharField(max_length=255, null=True)

    class Meta:  # type: ignore
        table = "profiles"


class Notification(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    user_id = fields.UUIDField(db_index=True)
    type = fields.CharField(max_length=64)
    title = fields.CharField(max_length=255)
    message = fields.TextField()
    data = fields.JSONField(default=dict)
    is_read = fields.BooleanField(default=False)

    class Meta:  # type: ignore
        table = "notifications"
        ordering = ["-created_at"]
