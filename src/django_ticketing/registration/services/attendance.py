"""Attendance service: the "is this user attending this event" fact.

Registration is check-then-act with a database unique constraint behind it;
losing the race surfaces as ``AlreadyRegistered`` exactly like the lookup
does. Ticket issuance after a registration is best-effort: the attendance is
committed first and a ticket failure never undoes it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from django_ticketing.registration.exceptions import AlreadyRegistered, RegistrationError
from django_ticketing.registration.models import Attendance, Ticket
from django_ticketing.registration.services.capacity import validate_capacity
from django_ticketing.registration.services.tickets import TicketService
from django_ticketing.registration.signals import attendance_confirmed

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from django_ticketing.events.models import Event
    from django_ticketing.registration.models import Purchase

logger = logging.getLogger(__name__)


def issue_ticket_safely(
    user: AbstractBaseUser,
    event: Event,
    *,
    purchase: Purchase | None = None,
    attendance: Attendance | None = None,
) -> Ticket | None:
    """Issue a ticket, logging and swallowing issuance failures.

    Used after an authoritative state change (registration, payment) so that
    a broken ticket step leaves the user registered without a ticket rather
    than losing the registration. The gap is repaired by ``ensure_ticket`` or
    the ``reconcile_registrations`` command.

    Returns:
        The ticket, or ``None`` if issuance failed.
    """
    try:
        return TicketService.issue_ticket(user, event, purchase=purchase, attendance=attendance)
    except RegistrationError:
        logger.exception("Ticket issuance failed for user %s, event %s; registration kept", user.pk, event.pk)
        return None


class AttendanceService:
    """Stateless service for attendance records."""

    @staticmethod
    def get(user: AbstractBaseUser, event: Event) -> Attendance | None:
        """Return the attendance for ``(user, event)``, or ``None``."""
        return Attendance.objects.filter(user=user, event=event).first()

    @staticmethod
    def register(
        user: AbstractBaseUser,
        event: Event,
        *,
        status: str = Attendance.Status.GOING,
        purchase: Purchase | None = None,
        issue_ticket: bool = True,
    ) -> Attendance:
        """Create the attendance record for ``(user, event)``.

        Capacity is enforced under a lock on the event row. Once the record
        has been committed a ticket is issued best-effort.

        Args:
            user: The registering user.
            event: The event being attended.
            status: The initial attendance status.
            purchase: The purchase backing this attendance, if any.
            issue_ticket: Whether to issue a ticket after registering.

        Returns:
            The newly created attendance.

        Raises:
            AlreadyRegistered: If the user already has an attendance record.
            EventFull: If the event has no seat left.
        """
        if AttendanceService.get(user, event) is not None:
            raise AlreadyRegistered

        try:
            with transaction.atomic():
                if status in Attendance.CONFIRMED_STATUSES:
                    validate_capacity(event)
                attendance = Attendance.objects.create(
                    user=user,
                    event=event,
                    status=status,
                    purchase=purchase,
                )
        except IntegrityError as exc:
            raise AlreadyRegistered from exc

        logger.info("User %s registered for event %s (%s)", user.pk, event.pk, status)
        attendance_confirmed.send(sender=Attendance, attendance=attendance, user=user)

        if issue_ticket and attendance.is_confirmed:
            issue_ticket_safely(user, event, purchase=purchase, attendance=attendance)
        return attendance

    @staticmethod
    def upsert(
        user: AbstractBaseUser,
        event: Event,
        *,
        status: str = Attendance.Status.GOING,
        purchase: Purchase | None = None,
    ) -> Attendance:
        """Create or update the attendance for ``(user, event)`` by natural key.

        Never creates a second row; capacity is not enforced because callers
        use this after a payment has already been taken.
        """
        defaults: dict[str, object] = {"status": status}
        if purchase is not None:
            defaults["purchase"] = purchase
        try:
            with transaction.atomic():
                attendance, created = Attendance.objects.update_or_create(
                    user=user,
                    event=event,
                    defaults=defaults,
                )
        except IntegrityError:
            # Lost the insert race; the winner's row is now visible.
            Attendance.objects.filter(user=user, event=event).update(**defaults)
            attendance = Attendance.objects.get(user=user, event=event)
            created = False

        if created:
            logger.info("Attendance created for user %s, event %s via upsert", user.pk, event.pk)
            attendance_confirmed.send(sender=Attendance, attendance=attendance, user=user)
        return attendance

    @staticmethod
    def unregister(user: AbstractBaseUser, event: Event) -> bool:
        """Delete the attendance for ``(user, event)``.

        A missing record is treated as success. For free events the unused
        ticket goes with it; for paid events the ticket and purchase are kept
        as proof of payment and only the attendance marker is removed.

        Returns:
            ``True`` if an attendance row was deleted.
        """
        with transaction.atomic():
            deleted, _ = Attendance.objects.filter(user=user, event=event).delete()
            if event.is_free:
                Ticket.objects.filter(
                    user=user,
                    event=event,
                    purchase__isnull=True,
                    validation_status=Ticket.ValidationStatus.VALID,
                ).delete()

        if deleted:
            logger.info("User %s unregistered from event %s", user.pk, event.pk)
        else:
            logger.info("Unregister for user %s, event %s found no attendance", user.pk, event.pk)
        return bool(deleted)
