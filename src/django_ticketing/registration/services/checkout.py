"""Checkout service: start (or restart) a Stripe Checkout for a paid event.

A user has at most one purchase row per event created through this service.
Retrying checkout, whether after abandoning a session or after a failed
payment, points the existing row at the new session and resets it to
``pending`` instead of inserting another row.

The Stripe call is made outside any transaction. Eligibility is checked under
the event lock, the lock is released, and only the user's own purchase rows
are locked again to record the new session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from django_ticketing.registration.exceptions import AlreadyPurchased, NotFound, NotPayable, Unauthenticated
from django_ticketing.registration.models import Purchase
from django_ticketing.registration.services.capacity import validate_capacity
from django_ticketing.registration.services.verification import SESSION_PAID, VerificationService, settlement_status
from django_ticketing.registration.stripe_client import StripeClient
from django_ticketing.settings import get_config

if TYPE_CHECKING:
    import stripe
    from django.contrib.auth.models import AbstractBaseUser

    from django_ticketing.events.models import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """The outcome of starting a checkout: where to send the user."""

    redirect_url: str
    session_id: str
    purchase: Purchase


def _check_eligibility(user: AbstractBaseUser, event: Event) -> Purchase | None:
    """Validate capacity and prior payment, returning the newest purchase.

    Raises:
        EventFull: If the event has no seat left.
        AlreadyPurchased: If the user already paid for this event.
    """
    with transaction.atomic():
        validate_capacity(event, user=user)
        purchases = list(Purchase.objects.filter(user=user, event=event).order_by("-created_at"))
    if any(purchase.is_paid for purchase in purchases):
        raise AlreadyPurchased
    return purchases[0] if purchases else None


def _settle_previous_session(client: StripeClient, purchase: Purchase | None) -> None:
    """Re-check a pending session before it is superseded.

    A session the user paid for but never returned from is settled here, so
    restarting checkout cannot charge them a second time.

    Raises:
        AlreadyPurchased: If the previous session turned out to be paid.
        ProcessorError: If Stripe could not be queried.
    """
    if purchase is None or not purchase.stripe_session_id:
        return
    if purchase.payment_status != Purchase.PaymentStatus.PENDING:
        return
    try:
        previous = client.retrieve_checkout_session(purchase.stripe_session_id)
    except NotFound:
        logger.warning(
            "Previous session %s of purchase %s is unknown to Stripe",
            purchase.stripe_session_id,
            purchase.pk,
        )
        return
    if settlement_status(previous) != SESSION_PAID:
        return

    logger.info("Previous session %s of purchase %s was paid; settling it", previous.id, purchase.pk)
    VerificationService.settle(previous)
    raise AlreadyPurchased


def _record_session(user: AbstractBaseUser, event: Event, session: stripe.checkout.Session) -> Purchase:
    """Point the user's newest purchase at ``session``, or create one."""
    currency = get_config().currency
    with transaction.atomic():
        purchases = list(
            Purchase.objects.select_for_update().filter(user=user, event=event).order_by("-created_at"),
        )
        for purchase in purchases:
            # A concurrent request with the same idempotency key got the same session.
            if purchase.stripe_session_id == session.id:
                return purchase
        if any(purchase.is_paid for purchase in purchases):
            logger.warning("Session %s created after event %s was paid by user %s", session.id, event.pk, user.pk)
            raise AlreadyPurchased

        purchase = purchases[0] if purchases else None
        if purchase is not None:
            previous_session = purchase.stripe_session_id
            purchase.stripe_session_id = session.id
            purchase.payment_status = Purchase.PaymentStatus.PENDING
            purchase.amount_paid = event.price
            purchase.currency = currency
            purchase.save(
                update_fields=["stripe_session_id", "payment_status", "amount_paid", "currency", "updated_at"],
            )
            logger.info(
                "Reused purchase %s for event %s: session %s -> %s",
                purchase.pk,
                event.pk,
                previous_session or "-",
                session.id,
            )
            return purchase

        try:
            with transaction.atomic():
                purchase = Purchase.objects.create(
                    user=user,
                    event=event,
                    amount_paid=event.price,
                    currency=currency,
                    payment_status=Purchase.PaymentStatus.PENDING,
                    stripe_session_id=session.id,
                    ticket_quantity=1,
                )
        except IntegrityError:
            return Purchase.objects.get(stripe_session_id=session.id)
        logger.info("Created purchase %s for event %s (session %s)", purchase.pk, event.pk, session.id)
        return purchase


class CheckoutService:
    """Stateless service for starting Stripe Checkout sessions."""

    @staticmethod
    def initiate_checkout(
        user: AbstractBaseUser | None,
        event: Event,
        *,
        success_url: str,
        cancel_url: str,
        stripe_client: StripeClient | None = None,
    ) -> CheckoutSession:
        """Create a Checkout session for ``event`` and record a pending purchase.

        The Stripe request carries an idempotency key derived from the user,
        the event and the session being replaced, so concurrent clicks and
        transport retries resolve to the same hosted session.

        Args:
            user: The purchasing user.
            event: The paid event.
            success_url: Stripe redirect target after payment; should carry
                the ``{CHECKOUT_SESSION_ID}`` placeholder.
            cancel_url: Stripe redirect target when checkout is abandoned.
            stripe_client: Optional client override, mainly for tests.

        Returns:
            The hosted checkout redirect URL, session id, and purchase row.

        Raises:
            Unauthenticated: If there is no signed-in user.
            NotFound: If the event is not open for registration.
            NotPayable: If the event is free.
            AlreadyPurchased: If the user already paid for this event,
                including through a pending session that was never verified.
            EventFull: If the event has no seat left.
            ProcessorError: If Stripe could not create the session.
        """
        if user is None or not user.is_authenticated:
            raise Unauthenticated
        if event.is_free:
            raise NotPayable
        if not event.is_open_for_registration:
            msg = "This event is not open for registration."
            raise NotFound(msg)

        latest = _check_eligibility(user, event)

        client = stripe_client or StripeClient()
        _settle_previous_session(client, latest)

        session = client.create_checkout_session(
            event=event,
            user=user,
            success_url=success_url,
            cancel_url=cancel_url,
            previous_session_id=latest.stripe_session_id if latest is not None else "",
        )
        purchase = _record_session(user, event, session)
        return CheckoutSession(redirect_url=session.url, session_id=session.id, purchase=purchase)
