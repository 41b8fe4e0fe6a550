"""Transactional emails: host booking notice and guest payment-initiation notice."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from html import escape
from string import Template
from uuid import UUID

from loguru import logger

from travel_bookings import settings
from travel_bookings.crud import profile_crud
from travel_bookings.deps import EmailClient


class HostNotFound(LookupError):
    pass


_BASE_STYLE = """
      body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
      .container { max-width: 600px; margin: 0 auto; padding: 20px; }
      .header { background: $accent; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0; }
      .content { background: #f9f9f9; padding: 30px; border-radius: 0 0 8px 8px; }
      .detail-box { background: white; padding: 20px; margin: 20px 0; border-radius: 8px; border-left: 4px solid $accent; }
      .footer { text-align: center; margin-top: 30px; color: #666; font-size: 14px; }
      .amount { font-size: 28px; color: $accent; font-weight: bold; }
"""

_HOST_BOOKING_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
  <head><style>$style</style></head>
  <body>
    <div class="container">
      <div class="header"><h1>New Booking Received!</h1></div>
      <div class="content">
        <p>Dear $host_name,</p>
        <p>Great news! You have received a new paid booking.</p>
        <div class="detail-box">
          <h2>Booking Details</h2>
          <p><strong>Booking ID:</strong> $booking_id</p>
          <p><strong>Guest Name:</strong> $guest_name</p>
          <p><strong>Item:</strong> $item_name</p>
          $visit_date_row
          <p class="amount">Amount Paid: $currency $total_amount</p>
          <p><strong>Payment Confirmed</strong></p>
        </div>
        <p>The guest has completed payment via M-Pesa. Please prepare for their visit.</p>
        <p>Log in to your dashboard to view full booking details and contact information.</p>
      </div>
      <div class="footer"><p>This is an automated notification. Please do not reply to this message.</p></div>
    </div>
  </body>
</html>
"""
)

_PAYMENT_INITIATION_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
  <head><style>$style</style></head>
  <body>
    <div class="container">
      <div class="header"><h1>Payment Initiated</h1></div>
      <div class="content">
        <p>Dear $guest_name,</p>
        <p>Your payment request has been sent to your phone.</p>
        <p><strong>Awaiting Payment Confirmation</strong></p>
        <div class="detail-box">
          <h2>Payment Details</h2>
          <p><strong>Item:</strong> $item_name</p>
          <p><strong>Phone Number:</strong> $phone</p>
          <p class="amount">Amount: $currency $total_amount</p>
        </div>
        <div class="detail-box">
          <h2>Next Steps</h2>
          <ol>
            <li>Check your phone for the M-Pesa payment prompt</li>
            <li>Enter your M-Pesa PIN to complete the payment</li>
            <li>You'll receive a confirmation email once payment is successful</li>
          </ol>
        </div>
        <p><strong>Note:</strong> If you don't see the payment prompt, please contact us immediately.</p>
      </div>
      <div class="footer"><p>This is an automated notification. Please do not reply to this message.</p></div>
    </div>
  </body>
</html>
"""
)


def format_amount(amount: Decimal) -> str:
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def _style(accent: str) -> str:
    return Template(_BASE_STYLE).substitute(accent=accent)


def render_host_booking_email(
    *,
    host_name: str | None,
    booking_id: UUID,
    guest_name: str,
    item_name: str,
    total_amount: Decimal,
    visit_date: date | None = None,
) -> str:
    visit_date_row = (
        f"<p><strong>Visit Date:</strong> {visit_date.isoformat()}</p>"
        if visit_date
        else ""
    )
    return _HOST_BOOKING_TEMPLATE.substitute(
        style=_style("#008080"),
        host_name=escape(host_name or "Host"),
        booking_id=escape(str(booking_id)),
        guest_name=escape(guest_name),
        item_name=escape(item_name),
        visit_date_row=visit_date_row,
        currency=settings.currency,
        total_amount=format_amount(total_amount),
    )


def render_payment_initiation_email(
    *,
    guest_name: str,
    item_name: str,
    total_amount: Decimal,
    phone: str,
) -> str:
    return _PAYMENT_INITIATION_TEMPLATE.substitute(
        style=_style("#4F46E5"),
        guest_name=escape(guest_name),
        item_name=escape(item_name),
        phone=escape(phone),
        currency=settings.currency,
        total_amount=format_amount(total_amount),
    )


async def send_host_booking_notification(
    email_client: EmailClient,
    *,
    host_id: UUID,
    booking_id: UUID,
    guest_name: str,
    item_name: str,
    total_amount: Decimal,
    visit_date: date | None = None,
) -> dict:
    """Email the host about a paid booking. Raises HostNotFound without an address."""
    host = await profile_crud.get_contact(host_id)
    if host is None or not host.get("email"):
        raise HostNotFound(f"No email on file for host {host_id}")

    html = render_host_booking_email(
        host_name=host.get("name"),
        booking_id=booking_id,
        guest_name=guest_name,
        item_name=item_name,
        total_amount=total_amount,
        visit_date=visit_date,
    )
    data = await email_client.send(
        sender=settings.bookings_email_from,
        to=[host["email"]],
        subject=f"New Paid Booking - {item_name}",
        html=html,
    )
    logger.info("Host notification sent: booking_id={} host_id={}", booking_id, host_id)
    return data


async def send_payment_initiation(
    email_client: EmailClient,
    *,
    email: str,
    guest_name: str,
    item_name: str,
    total_amount: Decimal,
    phone: str,
) -> dict:
    html = render_payment_initiation_email(
        guest_name=guest_name,
        item_name=item_name,
        total_amount=total_amount,
        phone=phone,
    )
    data = await email_client.send(
        sender=settings.payments_email_from,
        to=[email],
        subject=f"Payment Initiated - {item_name}",
        html=html,
    )
    logger.info("Payment initiation email sent to {}", email)
    return data
