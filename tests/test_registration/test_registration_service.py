"""Tests for the RegistrationService facade in django_ticketing.registration.services.registration."""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.utils import timezone

from django_ticketing.events.models import Event
from django_ticketing.registration.exceptions import NotFound, NotFree, RenderingError, Unauthenticated
from django_ticketing.registration.models import Attendance, Purchase, Ticket
from django_ticketing.registration.services.registration import RegistrationService, RegistrationState

User = get_user_model()


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def user(db):
    return User.objects.create_user(username="member", email="member@example.com", password="testpass123")


@pytest.fixture
def other_user(db):
    return User.objects.create_user(username="stranger", password="testpass123")


@pytest.fixture
def free_event(user):
    return Event.objects.create(
        organizer=user,
        title="Lightning Talks",
        slug="lightning-talks",
        starts_at=timezone.now() + timedelta(days=4),
    )


@pytest.fixture
def paid_event(user):
    return Event.objects.create(
        organizer=user,
        title="Tutorial Day",
        slug="tutorial-day",
        starts_at=timezone.now() + timedelta(days=4),
        price=Decimal("80.00"),
    )


@pytest.fixture
def stripe_client():
    client = MagicMock()
    client.create_checkout_session.side_effect = [
        SimpleNamespace(id=f"cs_facade_{index}", url=f"https://checkout.stripe.com/{index}") for index in range(1, 4)
    ]
    return client


def _paid_session(session_id, event, user):
    return SimpleNamespace(
        id=session_id,
        payment_status="paid",
        status="complete",
        payment_intent="pi_facade",
        amount_total=8000,
        metadata={"event_id": str(event.pk), "user_id": str(user.pk)},
    )


# =============================================================================
# TestRegister
# =============================================================================


@pytest.mark.django_db
class TestRegister:
    def test_free_registration_issues_ticket(self, user, free_event):
        attendance = RegistrationService.register(user, free_event.pk)

        assert attendance.status == Attendance.Status.GOING
        ticket = Ticket.objects.get(user=user, event=free_event)
        assert ticket.is_valid
        assert ticket.ticket_number.startswith("TKT-")

    def test_register_twice_returns_existing(self, user, free_event):
        first = RegistrationService.register(user, free_event.pk)
        second = RegistrationService.register(user, free_event.pk)

        assert first.pk == second.pk
        assert Ticket.objects.filter(user=user, event=free_event).count() == 1

    def test_paid_event_raises_not_free(self, user, paid_event):
        with pytest.raises(NotFree):
            RegistrationService.register(user, paid_event.pk)

    def test_paid_event_with_paid_purchase_reattaches(self, user, paid_event):
        purchase = Purchase.objects.create(
            user=user,
            event=paid_event,
            amount_paid=Decimal("80.00"),
            payment_status=Purchase.PaymentStatus.PAID,
            stripe_session_id="cs_paid_before",
        )

        attendance = RegistrationService.register(user, paid_event.pk)

        assert attendance.purchase == purchase
        assert Ticket.objects.get(user=user, event=paid_event).purchase == purchase

    def test_anonymous_rejected(self, free_event):
        with pytest.raises(Unauthenticated):
            RegistrationService.register(AnonymousUser(), free_event.pk)

    def test_none_user_rejected(self, free_event):
        with pytest.raises(Unauthenticated):
            RegistrationService.register(None, free_event.pk)

    def test_missing_event(self, user):
        with pytest.raises(NotFound):
            RegistrationService.register(user, 999999)

    def test_draft_event(self, user, free_event):
        free_event.status = Event.Status.DRAFT
        free_event.save()
        with pytest.raises(NotFound):
            RegistrationService.register(user, free_event.pk)


# =============================================================================
# TestPurchaseFlow
# =============================================================================


@pytest.mark.django_db
class TestPurchaseFlow:
    def test_purchase_then_verify(self, user, paid_event, stripe_client):
        checkout = RegistrationService.purchase(
            user,
            paid_event.pk,
            success_url="https://example.com/verify/?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="https://example.com/",
            stripe_client=stripe_client,
        )
        assert RegistrationService.get_state(user, paid_event.pk) == RegistrationState.PURCHASE_PENDING

        stripe_client.retrieve_checkout_session.return_value = _paid_session(checkout.session_id, paid_event, user)
        result = RegistrationService.verify_after_redirect(checkout.session_id, stripe_client=stripe_client)

        assert result.success is True
        assert RegistrationService.get_state(user, paid_event.pk) == RegistrationState.PURCHASED

    def test_abandon_and_retry_keeps_one_pending_purchase(self, user, paid_event, stripe_client):
        for _ in range(2):
            RegistrationService.purchase(
                user,
                paid_event.pk,
                success_url="https://example.com/ok",
                cancel_url="https://example.com/",
                stripe_client=stripe_client,
            )

        purchase = Purchase.objects.get(user=user, event=paid_event)
        assert purchase.payment_status == Purchase.PaymentStatus.PENDING
        assert purchase.stripe_session_id == "cs_facade_2"

    def test_failed_verification_state(self, user, paid_event, stripe_client):
        checkout = RegistrationService.purchase(
            user,
            paid_event.pk,
            success_url="https://example.com/ok",
            cancel_url="https://example.com/",
            stripe_client=stripe_client,
        )
        stripe_client.retrieve_checkout_session.return_value = SimpleNamespace(
            id=checkout.session_id,
            payment_status="unpaid",
            status="expired",
            metadata={},
        )

        result = RegistrationService.verify_after_redirect(checkout.session_id, stripe_client=stripe_client)

        assert result.success is False
        assert RegistrationService.get_state(user, paid_event.pk) == RegistrationState.PURCHASE_FAILED


# =============================================================================
# TestUnregister
# =============================================================================


@pytest.mark.django_db
class TestUnregister:
    def test_free_register_unregister_leaves_nothing(self, user, free_event):
        RegistrationService.register(user, free_event.pk)

        RegistrationService.unregister(user, free_event.pk)

        assert not Attendance.objects.filter(user=user, event=free_event).exists()
        assert not Ticket.objects.filter(user=user, event=free_event).exists()
        assert RegistrationService.get_state(user, free_event.pk) == RegistrationState.NONE

    def test_unregister_is_idempotent(self, user, free_event):
        RegistrationService.unregister(user, free_event.pk)
        RegistrationService.unregister(user, free_event.pk)

    def test_paid_unregister_returns_to_none(self, user, paid_event):
        purchase = Purchase.objects.create(
            user=user,
            event=paid_event,
            amount_paid=Decimal("80.00"),
            payment_status=Purchase.PaymentStatus.PAID,
            stripe_session_id="cs_paid_unreg",
        )
        Attendance.objects.create(user=user, event=paid_event, purchase=purchase)

        RegistrationService.unregister(user, paid_event.pk)

        assert RegistrationService.get_state(user, paid_event.pk) == RegistrationState.NONE
        purchase.refresh_from_db()
        assert purchase.is_paid


# =============================================================================
# TestTickets
# =============================================================================


@pytest.mark.django_db
class TestTickets:
    def test_download_own_ticket(self, user, free_event):
        RegistrationService.register(user, free_event.pk)
        ticket = Ticket.objects.get(user=user, event=free_event)

        filename, pdf = RegistrationService.download_ticket(user, ticket.pk)

        assert filename == f"ticket-{ticket.ticket_number}.pdf"
        assert pdf.startswith(b"%PDF")

    def test_download_other_users_ticket_is_not_found(self, user, other_user, free_event):
        RegistrationService.register(user, free_event.pk)
        ticket = Ticket.objects.get(user=user, event=free_event)

        with pytest.raises(NotFound):
            RegistrationService.download_ticket(other_user, ticket.pk)

    def test_download_after_render_failure_succeeds(self, user, free_event):
        RegistrationService.register(user, free_event.pk)
        ticket = Ticket.objects.get(user=user, event=free_event)

        with (
            patch(
                "django_ticketing.registration.services.rendering.build_qr_image",
                side_effect=ValueError("bad data"),
            ),
            pytest.raises(RenderingError),
        ):
            RegistrationService.download_ticket(user, ticket.pk)

        _, pdf = RegistrationService.download_ticket(user, ticket.pk)
        assert pdf.startswith(b"%PDF")

    def test_ensure_ticket_repairs_gap(self, user, free_event):
        Attendance.objects.create(user=user, event=free_event)

        ticket = RegistrationService.ensure_ticket(user, free_event.pk)

        assert ticket.user == user
        assert RegistrationService.ensure_ticket(user, free_event.pk).pk == ticket.pk


# =============================================================================
# TestGetState
# =============================================================================


@pytest.mark.django_db
class TestGetState:
    def test_none(self, user, free_event):
        assert RegistrationService.get_state(user, free_event.pk) == RegistrationState.NONE

    def test_registered(self, user, free_event):
        RegistrationService.register(user, free_event.pk)
        assert RegistrationService.get_state(user, free_event.pk) == RegistrationState.REGISTERED

    def test_state_is_string_valued(self):
        assert RegistrationState.PURCHASE_PENDING == "purchase_pending"
