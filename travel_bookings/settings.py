import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
# Seconds a listing's per-date booked totals stay cached
availability_cache_ttl = int(os.environ.get("AVAILABILITY_CACHE_TTL", "60"))

# Issued by the auth service; only referenced in the OpenAPI docs
token_url = os.environ.get("TOKEN_URL", "http://localhost:8001/auth/token")

generate_schemas = os.environ.get("GENERATE_SCHEMAS", "true").lower() == "true"
cors_origins = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()
] or ["http://localhost:5173", "http://127.0.0.1:5173"]

# Visit dates are calendar days in this zone
bookings_tz = os.environ.get("BOOKINGS_TZ", "Africa/Nairobi")
reschedule_notice_hours = int(os.environ.get("RESCHEDULE_NOTICE_HOURS", "48"))
currency = os.environ.get("CURRENCY", "KES")

# M-Pesa Daraja (STK push)
mpesa_base_url = os.environ.get("MPESA_BASE_URL", "https://sandbox.safaricom.co.ke")
mpesa_consumer_key = os.environ.get("MPESA_CONSUMER_KEY", "")
mpesa_consumer_secret = os.environ.get("MPESA_CONSUMER_SECRET", "")
mpesa_shortcode = os.environ.get("MPESA_SHORTCODE", "174379")
mpesa_passkey = os.environ.get("MPESA_PASSKEY", "")
mpesa_callback_url = os.environ.get(
    "MPESA_CALLBACK_URL", "http://localhost:8000/mpesa-callback"
)

# Resend transactional email
resend_base_url = os.environ.get("RESEND_BASE_URL", "https://api.resend.com")
resend_api_key = os.environ.get("RESEND_API_KEY", "")
bookings_email_from = os.environ.get(
    "BOOKINGS_EMAIL_FROM", "Bookings <onboarding@resend.dev>"
)
payments_email_from = os.environ.get(
    "PAYMENTS_EMAIL_FROM", "Payments <onboarding@resend.dev>"
)
