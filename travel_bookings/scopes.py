from enum import StrEnum


class BookingScope(StrEnum):
    # Guest scopes
    READ = "bookings:read"  # view own bookings, payments and saved items
    WRITE = "bookings:write"  # create a booking, save listings
    CANCEL = "bookings:cancel"  # cancel own booking
    RESCHEDULE = "bookings:reschedule"  # move own booking to another date

    # Host scopes
    MANAGE = "bookings:manage"  # cancel / reject bookings on own listings
    LISTINGS_WRITE = "listings:write"  # create listings (pending approval)

    # Internal callers
    NOTIFY = "notifications:send"  # trigger transactional emails

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"
    ADMIN_LISTINGS = "admin:listings"


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings, payments and saved listings.",
    BookingScope.WRITE: "Book a listing and manage your saved listings.",
    BookingScope.CANCEL: "Cancel your own active booking.",
    BookingScope.RESCHEDULE: "Change the visit date of your own booking.",
    BookingScope.MANAGE: "Cancel or reject bookings made on your listings.",
    BookingScope.LISTINGS_WRITE: "Create listings; they stay hidden until approved.",
    BookingScope.NOTIFY: "Send booking and payment emails (internal services).",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Modify any booking status (admin).",
    BookingScope.ADMIN_LISTINGS: "Approve or reject listings (admin).",
}
