"""Payment verification: reconcile a Checkout session with the local purchase.

Verification always re-queries Stripe and never trusts state reported by the
client. Each step commits on its own and is safe to re-run, so a crash between
marking the purchase paid, upserting the attendance, and issuing the ticket
leaves a partial state that the next ``verify`` call (from the browser or the
``reconcile_registrations`` command) completes:

1. the purchase is marked ``paid`` (a no-op if it already is),
2. the attendance is upserted by ``(user, event)``,
3. the ticket is issued idempotently; a failure here is logged and tolerated.

A payment is never rolled back because a later step failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import DatabaseError, transaction
from django.utils import timezone

from django_ticketing.registration.exceptions import NotFound
from django_ticketing.registration.models import Attendance, Purchase
from django_ticketing.registration.services.attendance import AttendanceService, issue_ticket_safely
from django_ticketing.registration.services.tickets import TicketService
from django_ticketing.registration.signals import purchase_paid
from django_ticketing.registration.stripe_client import StripeClient
from django_ticketing.registration.stripe_utils import from_stripe_amount

if TYPE_CHECKING:
    import stripe

    from django_ticketing.registration.models import Ticket

logger = logging.getLogger(__name__)

SESSION_PAID = "paid"
SESSION_UNPAID = "unpaid"
SESSION_EXPIRED = "expired"

_SETTLED_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


@dataclass(frozen=True, slots=True)
class PaymentVerified:
    """The session is paid and the purchase is recorded as such."""

    purchase_id: int
    event_id: int
    ticket: Ticket | None = None
    newly_paid: bool = False

    @property
    def success(self) -> bool:  # noqa: D102
        return True


@dataclass(frozen=True, slots=True)
class PaymentIncomplete:
    """The session has not settled; the user may retry checkout."""

    purchase_id: int | None
    event_id: int | None
    session_status: str = SESSION_UNPAID

    @property
    def success(self) -> bool:  # noqa: D102
        return False


VerificationResult = PaymentVerified | PaymentIncomplete


def settlement_status(session: stripe.checkout.Session) -> str:
    """Collapse a Checkout session into ``paid``, ``unpaid``, or ``expired``."""
    if getattr(session, "payment_status", None) in _SETTLED_PAYMENT_STATUSES:
        return SESSION_PAID
    if getattr(session, "status", None) == "expired":
        return SESSION_EXPIRED
    return SESSION_UNPAID


def _payment_intent_id(session: stripe.checkout.Session) -> str:
    """Return the PaymentIntent id whether or not the field was expanded."""
    intent = getattr(session, "payment_intent", None)
    if intent is None:
        return ""
    if isinstance(intent, str):
        return intent
    return str(getattr(intent, "id", "") or "")


def _session_metadata(session: stripe.checkout.Session) -> tuple[str, str]:
    """Return the ``(event_id, user_id)`` correlation metadata of a session."""
    metadata = getattr(session, "metadata", None) or {}
    try:
        return str(metadata["event_id"]), str(metadata["user_id"])
    except (KeyError, TypeError):
        return "", ""


def _find_superseded_purchase(session: stripe.checkout.Session) -> Purchase | None:
    """Locate the purchase a paid-but-superseded session belongs to.

    When a user restarts checkout, the purchase row is repointed at the new
    session. If the *old* session is the one that got paid, it no longer
    matches by id and is correlated through its metadata instead.
    """
    event_id, user_id = _session_metadata(session)
    if not event_id or not user_id:
        return None
    return Purchase.objects.filter(event_id=event_id, user_id=user_id).order_by("-created_at").first()


def _mark_paid(purchase_id: int, session: stripe.checkout.Session) -> tuple[Purchase, bool]:
    """Transition the purchase to PAID under a row lock.

    Returns:
        The purchase and whether this call performed the transition.
    """
    with transaction.atomic():
        purchase = Purchase.objects.select_for_update().select_related("user", "event").get(pk=purchase_id)
        if purchase.is_paid:
            if purchase.stripe_session_id != session.id:
                logger.error(
                    "Session %s paid for purchase %s which was already paid via %s; manual refund required",
                    session.id,
                    purchase.pk,
                    purchase.stripe_session_id,
                )
            return purchase, False

        purchase.payment_status = Purchase.PaymentStatus.PAID
        purchase.stripe_session_id = session.id
        purchase.stripe_payment_intent_id = _payment_intent_id(session)
        purchase.purchase_date = timezone.now()
        update_fields = [
            "payment_status",
            "stripe_session_id",
            "stripe_payment_intent_id",
            "purchase_date",
            "updated_at",
        ]
        amount_total = getattr(session, "amount_total", None)
        if isinstance(amount_total, int):
            purchase.amount_paid = from_stripe_amount(amount_total, purchase.currency)
            update_fields.append("amount_paid")
        purchase.save(update_fields=update_fields)

    logger.info("Purchase %s marked PAID via session %s", purchase.pk, session.id)
    return purchase, True


def _record_incomplete(
    session_id: str,
    purchase: Purchase | None,
    status: str,
    session: stripe.checkout.Session,
) -> PaymentIncomplete:
    """Mark the matching purchase FAILED and describe the incomplete payment."""
    if purchase is None:
        event_id, _user_id = _session_metadata(session)
        logger.warning("Unpaid session %s matches no purchase; it was probably superseded", session_id)
        return PaymentIncomplete(
            purchase_id=None,
            event_id=int(event_id) if event_id.isdigit() else None,
            session_status=status,
        )

    with transaction.atomic():
        locked = Purchase.objects.select_for_update().get(pk=purchase.pk)
        if locked.is_paid:
            logger.warning("Session %s reported %s but purchase %s is already paid", session_id, status, locked.pk)
        elif locked.payment_status != Purchase.PaymentStatus.FAILED:
            locked.payment_status = Purchase.PaymentStatus.FAILED
            locked.save(update_fields=["payment_status", "updated_at"])
            logger.info("Purchase %s marked FAILED (session %s is %s)", locked.pk, session_id, status)

    return PaymentIncomplete(purchase_id=locked.pk, event_id=locked.event_id, session_status=status)


class VerificationService:
    """Stateless service for payment verification."""

    @staticmethod
    def verify(session_id: str, *, stripe_client: StripeClient | None = None) -> VerificationResult:
        """Reconcile a Checkout session with its purchase.

        Args:
            session_id: The Stripe Checkout session id returned on redirect.
            stripe_client: Optional client override, mainly for tests.

        Returns:
            ``PaymentVerified`` when the session is paid (including when it was
            already verified before), otherwise ``PaymentIncomplete``.

        Raises:
            NotFound: If the session id is blank, unknown to Stripe, or paid
                but unrelated to any local purchase.
            ProcessorError: If Stripe could not be queried.
        """
        if not session_id:
            msg = "A checkout session id is required."
            raise NotFound(msg)

        client = stripe_client or StripeClient()
        session = client.retrieve_checkout_session(session_id)
        return VerificationService.settle(session)

    @staticmethod
    def settle(session: stripe.checkout.Session) -> VerificationResult:
        """Apply an already-retrieved Checkout session to its purchase.

        Raises:
            NotFound: If the session is paid but unrelated to any local purchase.
        """
        session_id = session.id
        status = settlement_status(session)
        purchase = Purchase.objects.filter(stripe_session_id=session_id).first()
        logger.info("Verifying session %s: %s (purchase %s)", session_id, status, getattr(purchase, "pk", None))

        if status != SESSION_PAID:
            return _record_incomplete(session_id, purchase, status, session)

        if purchase is None:
            purchase = _find_superseded_purchase(session)
            if purchase is None:
                msg = "No purchase matches this checkout session."
                raise NotFound(msg)
            logger.warning("Paid session %s adopted by superseded purchase %s", session_id, purchase.pk)

        purchase, newly_paid = _mark_paid(purchase.pk, session)
        if newly_paid:
            purchase_paid.send(sender=Purchase, purchase=purchase, user=purchase.user)
        else:
            existing = TicketService.get_existing(purchase.user, purchase.event)
            if existing is not None:
                logger.info("Session %s already verified (ticket %s)", session_id, existing.ticket_number)
                return PaymentVerified(purchase_id=purchase.pk, event_id=purchase.event_id, ticket=existing)

        attendance: Attendance | None
        try:
            attendance = AttendanceService.upsert(
                purchase.user,
                purchase.event,
                status=Attendance.Status.GOING,
                purchase=purchase,
            )
        except DatabaseError:
            logger.exception("Attendance upsert failed for purchase %s; payment kept", purchase.pk)
            attendance = None

        ticket = issue_ticket_safely(purchase.user, purchase.event, purchase=purchase, attendance=attendance)
        return PaymentVerified(
            purchase_id=purchase.pk,
            event_id=purchase.event_id,
            ticket=ticket,
            newly_paid=newly_paid,
        )
