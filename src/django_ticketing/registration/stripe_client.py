"""Stripe client wrapper for Checkout session operations.

The platform uses a single Stripe account configured in
``DJANGO_TICKETING["stripe"]``. Every call goes through the modern
``stripe.StripeClient`` pattern (v1 namespace) backed by an httpx transport
with a bounded timeout, and any Stripe failure is re-raised as
:class:`~django_ticketing.registration.exceptions.ProcessorError` so callers
never see SDK exception types.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

import stripe

from django_ticketing.registration.exceptions import NotFound, ProcessorError
from django_ticketing.registration.stripe_utils import mask_key, to_stripe_amount
from django_ticketing.settings import get_config

if TYPE_CHECKING:
    from collections.abc import Iterator

    from django.contrib.auth.models import AbstractBaseUser

    from django_ticketing.events.models import Event

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _processor_errors(action: str) -> Iterator[None]:
    """Translate Stripe SDK errors raised inside the block.

    A ``resource_missing`` lookup becomes :class:`NotFound`; everything else
    (network failures, timeouts, API and auth errors) becomes a retryable
    :class:`ProcessorError`.
    """
    try:
        yield
    except stripe.InvalidRequestError as exc:
        if getattr(exc, "code", None) == "resource_missing":
            msg = "Checkout session not found."
            raise NotFound(msg) from exc
        logger.warning("Stripe rejected %s: %s", action, exc)
        raise ProcessorError from exc
    except stripe.StripeError as exc:
        logger.warning("Stripe %s failed: %s", action, exc)
        raise ProcessorError from exc


class StripeClient:
    """Stripe Checkout client bound to the platform account.

    Args:
        secret_key: Optional key override. Defaults to
            ``DJANGO_TICKETING["stripe"]["secret_key"]``.

    Raises:
        ValueError: If no Stripe secret key is configured.
    """

    def __init__(self, secret_key: str | None = None) -> None:
        """Initialize the client with the configured Stripe credentials."""
        config = get_config()
        raw_key = secret_key or config.stripe.secret_key
        if not raw_key:
            msg = (
                "No Stripe secret key configured. "
                "Set DJANGO_TICKETING['stripe']['secret_key'] before taking payments."
            )
            raise ValueError(msg)

        self.client = stripe.StripeClient(
            str(raw_key),
            stripe_version=config.stripe.api_version,
            http_client=stripe.HTTPXClient(
                timeout=config.stripe.timeout_seconds,
                allow_sync_methods=True,
            ),
            max_network_retries=config.stripe.max_network_retries,
        )

        logger.debug("Initialized StripeClient with key %s", mask_key(str(raw_key)))

    def create_checkout_session(
        self,
        *,
        event: Event,
        user: AbstractBaseUser,
        success_url: str,
        cancel_url: str,
        previous_session_id: str = "",
    ) -> stripe.checkout.Session:
        """Create a hosted Checkout session for one ticket to ``event``.

        The event and user ids are embedded as metadata so a session can be
        correlated back to its purchase even if the local record was
        superseded.

        The request is sent with an idempotency key built from the user, the
        event and the session it replaces, so a retried request returns the
        session already created instead of opening a second one.

        Args:
            event: The paid event being purchased.
            user: The purchasing user.
            success_url: Where Stripe redirects after payment. Should contain
                the ``{CHECKOUT_SESSION_ID}`` placeholder.
            cancel_url: Where Stripe redirects when the user abandons checkout.
            previous_session_id: The session this checkout supersedes, if any.

        Returns:
            The created ``stripe.checkout.Session``.

        Raises:
            ProcessorError: If Stripe is unreachable or rejects the request.
        """
        currency = get_config().currency
        metadata = {"event_id": str(event.pk), "user_id": str(user.pk)}
        product_data: dict[str, object] = {"name": f"Ticket for {event.title}"}
        description = event.short_description or event.description
        if description:
            product_data["description"] = description[:500]

        params: dict[str, object] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": product_data,
                        "unit_amount": to_stripe_amount(event.price, currency),
                    },
                    "quantity": 1,
                },
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": str(user.pk),
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        email = getattr(user, "email", "")
        if email:
            params["customer_email"] = email

        idempotency_key = f"checkout-{user.pk}-{event.pk}-{previous_session_id or 'new'}"

        with _processor_errors("checkout session creation"):
            session = self.client.v1.checkout.sessions.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )

        logger.info("Created checkout session %s for event %s (user %s)", session.id, event.pk, user.pk)
        return session

    def retrieve_checkout_session(self, session_id: str) -> stripe.checkout.Session:
        """Fetch the current state of a Checkout session from Stripe.

        Raises:
            NotFound: If Stripe has no session with this id.
            ProcessorError: If Stripe is unreachable or rejects the request.
        """
        with _processor_errors("checkout session lookup"):
            return self.client.v1.checkout.sessions.retrieve(session_id)
