"""Attendee capacity enforcement for events.

Counts confirmed attendances (``going`` and ``attended``) against an event's
optional ``capacity``. Interested and not-going records do not hold a seat.
"""

from django.db import models

from django_ticketing.events.models import Event
from django_ticketing.registration.exceptions import EventFull
from django_ticketing.registration.models import Attendance


def get_confirmed_count(event: Event) -> int:
    """Return the number of attendances currently holding a seat at ``event``."""
    return Attendance.objects.filter(
        event=event,
        status__in=Attendance.CONFIRMED_STATUSES,
    ).count()


def get_remaining(event: Event) -> int | None:
    """Return the number of seats left, or ``None`` if the event is unlimited."""
    if event.capacity is None:
        return None
    return max(event.capacity - get_confirmed_count(event), 0)


def validate_capacity(event: Event, *, user: models.Model | None = None) -> None:
    """Raise ``EventFull`` if ``event`` has no seat left.

    Acquires a row-level lock on the event via ``select_for_update()`` so that
    concurrent registrations serialize on the capacity check. The caller
    **must** already be inside a ``transaction.atomic`` block.

    Unlimited events are detected from a fresh read of the row, not the
    in-memory instance, and take no lock. A capacity set by an organizer is
    re-read under the lock before counting seats.

    Args:
        event: The event to validate against.
        user: When given, a seat already held by this user does not count
            against them (re-registering never trips the limit).

    Raises:
        EventFull: If every seat is taken.
    """
    if Event.objects.filter(pk=event.pk, capacity__isnull=True).exists():
        return
    locked = Event.objects.select_for_update().get(pk=event.pk)
    if locked.capacity is None:
        return
    taken = Attendance.objects.filter(event=locked, status__in=Attendance.CONFIRMED_STATUSES)
    if user is not None:
        taken = taken.exclude(user=user)
    if taken.count() >= locked.capacity:
        msg = f"This event is sold out (capacity: {locked.capacity})."
        raise EventFull(msg)
