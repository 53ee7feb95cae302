"""Ticket issuance, repair, and door check-in.

Issuance is idempotent per ``(user, event)``: the free-registration path and
the paid-verification path may both call :meth:`TicketService.issue_ticket`
for the same pair, in any order and any number of times, and always get the
same ticket back. The database unique constraint on ``(user, event)`` closes
the race between the existence check and the insert.

QR payloads are signed with :mod:`django.core.signing` so a scanner can
verify a ticket offline; the live ``validation_status`` is still enforced by
:meth:`TicketService.check_in`.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import TYPE_CHECKING

from django.core import signing
from django.db import IntegrityError, transaction
from django.utils import timezone

from django_ticketing.registration.exceptions import IssuanceFailure, NotFound, TicketNotValid
from django_ticketing.registration.models import Attendance, Purchase, Ticket
from django_ticketing.registration.signals import ticket_issued
from django_ticketing.settings import get_config

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from django_ticketing.events.models import Event

logger = logging.getLogger(__name__)

_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
_NUMBER_SUFFIX_LENGTH = 8
_MAX_NUMBER_ATTEMPTS = 5


def generate_ticket_number() -> str:
    """Generate a human-readable ticket number using the configured prefix.

    The prefix is set via ``DJANGO_TICKETING["tickets"]["number_prefix"]``
    (default ``"TKT"``), producing numbers like ``TKT-20270601-A1B2C3D4``.
    The suffix comes from :mod:`secrets`, so numbers cannot be enumerated.
    """
    config = get_config()
    suffix = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(_NUMBER_SUFFIX_LENGTH))
    return f"{config.tickets.number_prefix}-{timezone.now():%Y%m%d}-{suffix}"


def build_qr_payload(ticket: Ticket) -> str:
    """Return the signed, compressed QR payload for a saved ticket."""
    data = {
        "tid": ticket.pk,
        "num": ticket.ticket_number,
        "eid": ticket.event_id,
        "uid": ticket.user_id,
        "iat": timezone.now().isoformat(),
    }
    return signing.dumps(data, salt=get_config().tickets.qr_salt, compress=True)


def decode_qr_payload(data: str) -> dict[str, object]:
    """Verify and decode a scanned QR payload.

    Args:
        data: The raw string read from the QR code.

    Returns:
        The decoded payload with ``tid``, ``num``, ``eid``, ``uid`` and ``iat``.

    Raises:
        TicketNotValid: If the signature does not verify.
    """
    try:
        payload = signing.loads(data, salt=get_config().tickets.qr_salt)
    except signing.BadSignature as exc:
        msg = "This ticket code is not recognised."
        raise TicketNotValid(msg) from exc
    if not isinstance(payload, dict) or "tid" not in payload:
        msg = "This ticket code is not recognised."
        raise TicketNotValid(msg)
    return payload


class TicketService:
    """Stateless service for ticket operations."""

    @staticmethod
    def get_existing(user: AbstractBaseUser, event: Event) -> Ticket | None:
        """Return the ticket for ``(user, event)`` if one has been issued."""
        return Ticket.objects.filter(user=user, event=event).first()

    @staticmethod
    def issue_ticket(
        user: AbstractBaseUser,
        event: Event,
        *,
        purchase: Purchase | None = None,
        attendance: Attendance | None = None,
    ) -> Ticket:
        """Return the ticket for ``(user, event)``, creating it if needed.

        An existing ticket is returned unchanged, whichever path created it.
        Otherwise a ticket with a fresh unique number and a signed QR payload
        is inserted with ``valid`` status and ``ticket_issued`` is sent.

        Args:
            user: The ticket holder.
            event: The event the ticket admits to.
            purchase: The paid purchase backing the ticket, if any.
            attendance: The attendance record backing the ticket, if any.

        Returns:
            The existing or newly created ticket.

        Raises:
            IssuanceFailure: If no ticket could be created.
        """
        existing = TicketService.get_existing(user, event)
        if existing is not None:
            logger.info("Ticket %s already exists for user %s, event %s", existing.ticket_number, user.pk, event.pk)
            return existing

        for _attempt in range(_MAX_NUMBER_ATTEMPTS):
            ticket_number = generate_ticket_number()
            try:
                with transaction.atomic():
                    ticket = Ticket.objects.create(
                        user=user,
                        event=event,
                        ticket_number=ticket_number,
                        purchase=purchase,
                        attendance=attendance,
                        validation_status=Ticket.ValidationStatus.VALID,
                    )
                    ticket.qr_code_data = build_qr_payload(ticket)
                    ticket.save(update_fields=["qr_code_data", "updated_at"])
            except IntegrityError:
                concurrent = TicketService.get_existing(user, event)
                if concurrent is not None:
                    logger.info("Ticket for user %s, event %s was issued concurrently", user.pk, event.pk)
                    return concurrent
                logger.warning("Ticket number collision on %s, retrying", ticket_number)
                continue
            except Exception as exc:
                msg = f"Could not issue a ticket for event {event.pk}."
                raise IssuanceFailure(msg) from exc

            logger.info("Issued ticket %s to user %s for event %s", ticket.ticket_number, user.pk, event.pk)
            ticket_issued.send(sender=Ticket, ticket=ticket, user=user)
            return ticket

        msg = f"Could not allocate a unique ticket number for event {event.pk}."
        raise IssuanceFailure(msg)

    @staticmethod
    def ensure_ticket(user: AbstractBaseUser, event: Event) -> Ticket:
        """Repair a missing ticket for a confirmed attendance or paid purchase.

        Safe to call at any time: a user who already holds a ticket gets it
        back unchanged.

        Raises:
            NotFound: If the user neither attends nor has paid for the event.
            IssuanceFailure: If the ticket could not be created.
        """
        existing = TicketService.get_existing(user, event)
        if existing is not None:
            return existing

        attendance = Attendance.objects.filter(
            user=user,
            event=event,
            status__in=Attendance.CONFIRMED_STATUSES,
        ).first()
        purchase = Purchase.objects.filter(
            user=user,
            event=event,
            payment_status=Purchase.PaymentStatus.PAID,
        ).first()
        if attendance is None and purchase is None:
            msg = "No confirmed registration or paid purchase for this event."
            raise NotFound(msg)
        if purchase is None and attendance is not None:
            purchase = attendance.purchase

        logger.info("Repairing missing ticket for user %s, event %s", user.pk, event.pk)
        return TicketService.issue_ticket(user, event, purchase=purchase, attendance=attendance)

    @staticmethod
    @transaction.atomic
    def check_in(qr_data: str, staff_user: AbstractBaseUser | None = None) -> Ticket:
        """Redeem a scanned ticket at the door.

        Verifies the QR signature, locks the ticket row, and transitions it
        from ``valid`` to ``used``, recording who validated it and when.

        Args:
            qr_data: The raw QR payload scanned from the ticket.
            staff_user: The staff member performing the check-in.

        Returns:
            The redeemed ticket.

        Raises:
            TicketNotValid: If the payload is forged, does not match a ticket,
                or the ticket was already used or has expired.
        """
        payload = decode_qr_payload(qr_data)
        ticket = Ticket.objects.select_for_update().filter(pk=payload["tid"]).first()
        if ticket is None or ticket.ticket_number != payload.get("num"):
            msg = "This ticket code does not match any ticket."
            raise TicketNotValid(msg)
        if not ticket.is_valid:
            msg = f"Ticket {ticket.ticket_number} is {ticket.get_validation_status_display().lower()}."
            raise TicketNotValid(msg)

        ticket.validation_status = Ticket.ValidationStatus.USED
        ticket.validated_at = timezone.now()
        ticket.validated_by = staff_user
        ticket.save(update_fields=["validation_status", "validated_at", "validated_by", "updated_at"])

        Attendance.objects.filter(user_id=ticket.user_id, event_id=ticket.event_id).update(
            status=Attendance.Status.ATTENDED,
        )

        logger.info("Checked in ticket %s (staff %s)", ticket.ticket_number, getattr(staff_user, "pk", None))
        return ticket
