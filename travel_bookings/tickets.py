from __future__ import annotations

import io
import json
from datetime import datetime, timezone
from typing import Any

from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from travel_bookings.models import PaymentStatus
from travel_bookings.rules import item_name

TICKET_PAGE = (100 * mm, 150 * mm)
_TICKETABLE = {PaymentStatus.PAID, PaymentStatus.COMPLETED}


def has_ticket(booking: Any) -> bool:
    return booking.payment_status in _TICKETABLE


def booking_reference(booking: Any) -> str:
    return str(booking.id).split("-")[0].upper()


def qr_payload(booking: Any) -> str:
    """What the entrance scanner reads off the ticket."""
    return json.dumps(
        {
            "booking_id": str(booking.id),
            "item_id": str(booking.item_id),
            "visit_date": booking.visit_date.isoformat() if booking.visit_date else None,
            "slots": booking.slots_booked,
        },
        separators=(",", ":"),
    )


def _qr_drawing(value: str, size: float) -> Drawing:
    widget = QrCodeWidget(value)
    x0, y0, x1, y1 = widget.getBounds()
    drawing = Drawing(size, size, transform=[size / (x1 - x0), 0, 0, size / (y1 - y0), 0, 0])
    drawing.add(widget)
    return drawing


def render_ticket_pdf(booking: Any) -> bytes:
    """Return the e-ticket PDF for a paid booking. Pure function."""
    buf = io.BytesIO()
    width, height = TICKET_PAGE
    c = canvas.Canvas(buf, pagesize=TICKET_PAGE)

    # Header band
    c.setFillColorRGB(30 / 255, 41 / 255, 59 / 255)
    c.rect(0, height - 40 * mm, width, 40 * mm, fill=1, stroke=0)
    c.setFillColorRGB(1, 1, 1)
    c.setFont("Helvetica-Bold", 18)
    c.drawCentredString(width / 2, height - 15 * mm, "E-TICKET")
    c.setFont("Helvetica", 10)
    c.drawCentredString(width / 2, height - 25 * mm, "GENERAL BOOKING")

    # Body
    c.setFillColorRGB(0, 0, 0)
    c.setFont("Helvetica-Bold", 12)
    c.drawString(10 * mm, height - 55 * mm, item_name(booking.booking_details or {}))
    c.setFont("Helvetica", 10)
    visit = booking.visit_date.isoformat() if booking.visit_date else "N/A"
    c.drawString(10 * mm, height - 65 * mm, f"Reference: {booking_reference(booking)}")
    c.drawString(10 * mm, height - 72 * mm, f"Date: {visit}")
    c.drawString(10 * mm, height - 79 * mm, f"Guest: {booking.guest_name or 'Valued Customer'}")
    c.drawString(10 * mm, height - 86 * mm, f"Total Group Size: {booking.slots_booked}")
    c.drawString(10 * mm, height - 93 * mm, f"Payment: {booking.payment_status}")

    renderPDF.draw(_qr_drawing(qr_payload(booking), 24 * mm), c, width - 34 * mm, height - 97 * mm)

    # Cut line
    c.setDash(2 * mm, 2 * mm)
    c.line(5 * mm, 30 * mm, width - 5 * mm, 30 * mm)
    c.setDash()
    c.setFont("Helvetica", 8)
    c.drawCentredString(width / 2, 15 * mm, "Scan at the entrance. Valid for one-time entry.")
    c.drawCentredString(
        width / 2, 8 * mm, f"Generated: {datetime.now(timezone.utc).isoformat(timespec='seconds')}"
    )

    c.showPage()
    c.save()
    return buf.getvalue()
