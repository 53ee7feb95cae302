"""Registration facade: the user-facing actions of the ticketing pipeline.

Composes the attendance, checkout, verification, and ticket services into the
operations the UI calls. Per ``(user, event)`` the state machine is::

    NONE -> REGISTERED                                  (free register)
    NONE -> PURCHASE_PENDING -> PURCHASED | PURCHASE_FAILED
    PURCHASE_FAILED -> PURCHASE_PENDING                 (retry checkout)
    REGISTERED | PURCHASED -> NONE                      (unregister)

No state is terminal: a user can always retry after a failure or unregister
after success.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from django_ticketing.events.models import Event
from django_ticketing.registration.exceptions import AlreadyRegistered, NotFound, NotFree, Unauthenticated
from django_ticketing.registration.models import Attendance, Purchase, Ticket
from django_ticketing.registration.services.attendance import AttendanceService, issue_ticket_safely
from django_ticketing.registration.services.checkout import CheckoutService
from django_ticketing.registration.services.rendering import render_ticket_pdf, ticket_filename
from django_ticketing.registration.services.tickets import TicketService
from django_ticketing.registration.services.verification import VerificationService

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from django_ticketing.registration.services.checkout import CheckoutSession
    from django_ticketing.registration.services.verification import VerificationResult
    from django_ticketing.registration.stripe_client import StripeClient

logger = logging.getLogger(__name__)


class RegistrationState(enum.StrEnum):
    """Where a user stands with respect to one event."""

    NONE = "none"
    REGISTERED = "registered"
    PURCHASE_PENDING = "purchase_pending"
    PURCHASED = "purchased"
    PURCHASE_FAILED = "purchase_failed"


def _require_user(user: AbstractBaseUser | None) -> AbstractBaseUser:
    if user is None or not user.is_authenticated:
        raise Unauthenticated
    return user


def _get_event(event_id: object) -> Event:
    try:
        return Event.objects.get(pk=event_id)
    except (Event.DoesNotExist, ValueError, TypeError) as exc:
        msg = "Event not found."
        raise NotFound(msg) from exc


def _get_open_event(event_id: object) -> Event:
    event = _get_event(event_id)
    if not event.is_open_for_registration:
        msg = "This event is not open for registration."
        raise NotFound(msg)
    return event


class RegistrationService:
    """Stateless facade over the registration, purchase, and ticket services."""

    @staticmethod
    def register(user: AbstractBaseUser | None, event_id: object) -> Attendance:
        """Register for a free event and issue its ticket.

        Registering twice returns the existing attendance. On a paid event a
        user who already holds a paid purchase (for example after
        unregistering) is re-attached to it without a new charge; anyone else
        is told to purchase instead.

        Raises:
            Unauthenticated: If there is no signed-in user.
            NotFound: If the event does not exist or is not open.
            NotFree: If the event is paid and the user has not paid for it.
            EventFull: If the event has no seat left.
        """
        user = _require_user(user)
        event = _get_open_event(event_id)

        if not event.is_free:
            purchase = Purchase.objects.filter(
                user=user,
                event=event,
                payment_status=Purchase.PaymentStatus.PAID,
            ).first()
            if purchase is None:
                raise NotFree
            attendance = AttendanceService.upsert(user, event, status=Attendance.Status.GOING, purchase=purchase)
            issue_ticket_safely(user, event, purchase=purchase, attendance=attendance)
            return attendance

        try:
            return AttendanceService.register(user, event)
        except AlreadyRegistered:
            logger.info("User %s is already registered for event %s", user.pk, event.pk)
            attendance = AttendanceService.get(user, event)
            if attendance is None:
                raise
            return attendance

    @staticmethod
    def purchase(
        user: AbstractBaseUser | None,
        event_id: object,
        *,
        success_url: str,
        cancel_url: str,
        stripe_client: StripeClient | None = None,
    ) -> CheckoutSession:
        """Start checkout for a paid event; the client must follow ``redirect_url``.

        Raises:
            Unauthenticated: If there is no signed-in user.
            NotFound: If the event does not exist or is not open.
            NotPayable: If the event is free.
            AlreadyPurchased: If the user already paid for this event.
            EventFull: If the event has no seat left.
            ProcessorError: If Stripe could not create the session.
        """
        user = _require_user(user)
        event = _get_open_event(event_id)
        return CheckoutService.initiate_checkout(
            user,
            event,
            success_url=success_url,
            cancel_url=cancel_url,
            stripe_client=stripe_client,
        )

    @staticmethod
    def verify_after_redirect(
        session_id: str,
        *,
        stripe_client: StripeClient | None = None,
    ) -> VerificationResult:
        """Verify the checkout session the user just returned from."""
        return VerificationService.verify(session_id, stripe_client=stripe_client)

    @staticmethod
    def unregister(user: AbstractBaseUser | None, event_id: object) -> None:
        """Remove the user's attendance. Already-unregistered is success.

        Paid events keep their purchase and ticket; see
        :meth:`AttendanceService.unregister`.
        """
        user = _require_user(user)
        event = _get_event(event_id)
        AttendanceService.unregister(user, event)

    @staticmethod
    def ensure_ticket(user: AbstractBaseUser | None, event_id: object) -> Ticket:
        """Return the user's ticket for an event, issuing a missing one."""
        user = _require_user(user)
        event = _get_event(event_id)
        return TicketService.ensure_ticket(user, event)

    @staticmethod
    def download_ticket(user: AbstractBaseUser | None, ticket_id: object) -> tuple[str, bytes]:
        """Render one of the user's tickets as a PDF.

        Returns:
            A ``(filename, pdf_bytes)`` tuple.

        Raises:
            Unauthenticated: If there is no signed-in user.
            NotFound: If the ticket does not exist or belongs to someone else.
            RenderingError: If rendering failed; retrying is safe.
        """
        user = _require_user(user)
        try:
            ticket = Ticket.objects.select_related("event", "user").get(pk=ticket_id, user=user)
        except (Ticket.DoesNotExist, ValueError, TypeError) as exc:
            msg = "Ticket not found."
            raise NotFound(msg) from exc
        return ticket_filename(ticket), render_ticket_pdf(ticket)

    @staticmethod
    def get_state(user: AbstractBaseUser | None, event_id: object) -> RegistrationState:
        """Derive the user's registration state for an event."""
        user = _require_user(user)
        event = _get_event(event_id)

        attendance = AttendanceService.get(user, event)
        purchase = Purchase.objects.filter(user=user, event=event).order_by("-created_at").first()

        if purchase is not None and purchase.is_paid:
            return RegistrationState.PURCHASED if attendance is not None else RegistrationState.NONE
        if attendance is not None:
            return RegistrationState.REGISTERED
        if purchase is None:
            return RegistrationState.NONE
        if purchase.payment_status == Purchase.PaymentStatus.FAILED:
            return RegistrationState.PURCHASE_FAILED
        return RegistrationState.PURCHASE_PENDING

    @staticmethod
    def get_purchase_state(
        purchase_id: int | None,
        *,
        user: AbstractBaseUser | None = None,
        event_id: int | None = None,
    ) -> RegistrationState:
        """Derive the registration state behind an unpaid session.

        An unpaid session may be an old session of a purchase that was since
        paid through a newer one, so the state comes from the purchase rather
        than the session. Without a matching purchase, the signed-in user's
        state for the session's event is used.
        """
        if purchase_id is not None:
            purchase = Purchase.objects.select_related("user").filter(pk=purchase_id).first()
            if purchase is not None:
                return RegistrationService.get_state(purchase.user, purchase.event_id)
        if user is not None and user.is_authenticated and Event.objects.filter(pk=event_id).exists():
            return RegistrationService.get_state(user, event_id)
        return RegistrationState.PURCHASE_FAILED
