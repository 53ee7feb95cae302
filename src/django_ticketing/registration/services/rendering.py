"""PDF rendering of tickets.

Rendering is a pure, read-only projection of a ``Ticket`` row: it can be
repeated any number of times and never touches ticket state. The QR image is
drawn with ``qrcode`` on Pillow, composed onto an A4 page, and saved with
Pillow's PDF writer. Any failure in this module is raised as
:class:`~django_ticketing.registration.exceptions.RenderingError`, which is
retryable and distinct from ticket issuance failures.
"""

import io
import logging

import qrcode
from django.utils import timezone
from PIL import Image, ImageDraw, ImageFont
from qrcode.constants import ERROR_CORRECT_M

from django_ticketing.registration.exceptions import RenderingError
from django_ticketing.registration.models import Ticket
from django_ticketing.settings import get_config

logger = logging.getLogger(__name__)

# A4 at 150 DPI.
PAGE_SIZE = (1240, 1754)
PAGE_DPI = 150.0
MARGIN = 100

_HEADER_FILL = (102, 126, 234)
_TEXT_FILL = (31, 41, 55)
_MUTED_FILL = (107, 114, 128)
_VALID_FILL = (5, 150, 105)
_INVALID_FILL = (220, 38, 38)


def _font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def _holder_name(ticket: Ticket) -> str:
    user = ticket.user
    get_name = getattr(user, "get_full_name", None)
    full_name = get_name() if callable(get_name) else ""
    return full_name or user.get_username() or "Guest"


def build_qr_image(data: str) -> Image.Image:
    """Return the QR code for ``data`` as an RGB Pillow image."""
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=get_config().tickets.qr_box_size,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")


def ticket_filename(ticket: Ticket) -> str:
    """Return the download filename for a ticket PDF."""
    return f"ticket-{ticket.ticket_number}.pdf"


def _draw_page(ticket: Ticket) -> Image.Image:
    event = ticket.event
    page = Image.new("RGB", PAGE_SIZE, "white")
    draw = ImageDraw.Draw(page)
    width, height = PAGE_SIZE

    draw.rectangle((0, 0, width, 300), fill=_HEADER_FILL)
    draw.text((MARGIN, 80), "EVENT TICKET", font=_font(40), fill="white")
    draw.text((MARGIN, 150), event.title[:60], font=_font(56), fill="white")

    starts_at = timezone.localtime(event.starts_at)
    details = (
        ("EVENT DATE & TIME", f"{starts_at:%A, %B %d, %Y %H:%M}"),
        ("LOCATION", event.location or event.address or "To be announced"),
        ("TICKET HOLDER", _holder_name(ticket)),
    )
    y = 380
    for label, value in details:
        draw.text((MARGIN, y), label, font=_font(24), fill=_MUTED_FILL)
        draw.text((MARGIN, y + 36), value[:70], font=_font(36), fill=_TEXT_FILL)
        y += 130

    status_fill = _VALID_FILL if ticket.is_valid else _INVALID_FILL
    draw.text((MARGIN, y), "STATUS", font=_font(24), fill=_MUTED_FILL)
    draw.text((MARGIN, y + 36), ticket.validation_status.upper(), font=_font(36), fill=status_fill)

    qr_image = build_qr_image(ticket.qr_code_data or ticket.ticket_number)
    qr_image.thumbnail((520, 520))
    qr_left = (width - qr_image.width) // 2
    qr_top = y + 160
    page.paste(qr_image, (qr_left, qr_top))
    draw.text((qr_left, qr_top + qr_image.height + 16), "SCAN FOR VALIDATION", font=_font(24), fill=_MUTED_FILL)

    band_top = height - 360
    draw.rectangle((0, band_top, width, band_top + 110), fill=_TEXT_FILL)
    draw.text((MARGIN, band_top + 32), f"TICKET #{ticket.ticket_number}", font=_font(44), fill="white")

    footer = (
        "This ticket is valid for one admission only. Present it (digital or printed) at the entrance.",
        f"Generated on {timezone.localdate():%Y-%m-%d}.",
    )
    for offset, line in enumerate(footer):
        draw.text((MARGIN, band_top + 160 + offset * 40), line, font=_font(22), fill=_MUTED_FILL)
    return page


def render_ticket_pdf(ticket: Ticket) -> bytes:
    """Render ``ticket`` as a single-page PDF.

    Args:
        ticket: The ticket to render. It is only read, never saved.

    Returns:
        The PDF document bytes.

    Raises:
        RenderingError: If the QR code or page could not be produced.
    """
    try:
        page = _draw_page(ticket)
        buffer = io.BytesIO()
        page.save(buffer, format="PDF", resolution=PAGE_DPI)
    except Exception as exc:
        logger.exception("Rendering failed for ticket %s", ticket.ticket_number)
        msg = f"Could not render ticket {ticket.ticket_number}."
        raise RenderingError(msg) from exc
    return buffer.getvalue()
