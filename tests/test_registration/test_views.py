"""Tests for the JSON views in django_ticketing.registration.views."""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from django.test import Client
from django.urls import reverse
from django.utils import timezone

from django_ticketing.events.models import Event
from django_ticketing.registration.exceptions import ProcessorError
from django_ticketing.registration.models import Attendance, Purchase, Ticket

User = get_user_model()


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def user(db):
    return User.objects.create_user(username="viewuser", email="view@example.com", password="testpass123")


@pytest.fixture
def staff(db):
    return User.objects.create_user(username="viewstaff", password="testpass123", is_staff=True)


@pytest.fixture
def free_event(user):
    return Event.objects.create(
        organizer=user,
        title="Free Meetup",
        slug="free-meetup",
        starts_at=timezone.now() + timedelta(days=6),
    )


@pytest.fixture
def paid_event(user):
    return Event.objects.create(
        organizer=user,
        title="Paid Summit",
        slug="paid-summit",
        starts_at=timezone.now() + timedelta(days=6),
        price=Decimal("99.00"),
    )


@pytest.fixture
def client_logged_in(user):
    client = Client()
    client.force_login(user)
    return client


@pytest.fixture
def mock_checkout_stripe():
    with patch("django_ticketing.registration.services.checkout.StripeClient") as mock_cls:
        mock_cls.return_value.create_checkout_session.return_value = SimpleNamespace(
            id="cs_view_1",
            url="https://checkout.stripe.com/c/pay/cs_view_1",
        )
        yield mock_cls.return_value


@pytest.fixture
def mock_verify_stripe():
    with patch("django_ticketing.registration.services.verification.StripeClient") as mock_cls:
        yield mock_cls.return_value


# =============================================================================
# TestAuthentication
# =============================================================================


@pytest.mark.django_db
class TestAuthentication:
    def test_anonymous_register_gets_json_401(self, free_event):
        response = Client().post(reverse("registration:register", args=[free_event.pk]))

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"

    def test_anonymous_ticket_list_gets_401(self, db):
        response = Client().get(reverse("registration:my-tickets"))
        assert response.status_code == 401

    def test_get_not_allowed_on_register(self, client_logged_in, free_event):
        response = client_logged_in.get(reverse("registration:register", args=[free_event.pk]))
        assert response.status_code == 405


# =============================================================================
# TestRegisterViews
# =============================================================================


@pytest.mark.django_db
class TestRegisterViews:
    def test_register_free_event(self, client_logged_in, user, free_event):
        response = client_logged_in.post(reverse("registration:register", args=[free_event.pk]))

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "registered"
        assert body["attendance"]["status"] == "going"
        assert body["ticket"]["ticket_number"].startswith("TKT-")
        assert Attendance.objects.filter(user=user, event=free_event).exists()

    def test_register_paid_event_is_400(self, client_logged_in, paid_event):
        response = client_logged_in.post(reverse("registration:register", args=[paid_event.pk]))

        assert response.status_code == 400
        assert response.json()["error"] == "NotFree"

    def test_register_missing_event_is_404(self, client_logged_in):
        response = client_logged_in.post(reverse("registration:register", args=[424242]))
        assert response.status_code == 404

    def test_full_event_is_409(self, client_logged_in, free_event):
        free_event.capacity = 0
        free_event.save()

        response = client_logged_in.post(reverse("registration:register", args=[free_event.pk]))

        assert response.status_code == 409
        assert response.json() == {
            "error": "EventFull",
            "message": "This event is sold out (capacity: 0).",
            "retryable": False,
        }

    def test_unregister(self, client_logged_in, user, free_event):
        client_logged_in.post(reverse("registration:register", args=[free_event.pk]))

        response = client_logged_in.post(reverse("registration:unregister", args=[free_event.pk]))

        assert response.status_code == 200
        assert response.json() == {"state": "none"}
        assert not Ticket.objects.filter(user=user).exists()

    def test_state(self, client_logged_in, free_event):
        response = client_logged_in.get(reverse("registration:state", args=[free_event.pk]))
        assert response.json() == {"event_id": free_event.pk, "state": "none"}

    def test_ensure_ticket_without_registration_is_404(self, client_logged_in, free_event):
        response = client_logged_in.post(reverse("registration:ensure-ticket", args=[free_event.pk]))
        assert response.status_code == 404

    def test_ensure_ticket(self, client_logged_in, user, free_event):
        Attendance.objects.create(user=user, event=free_event)

        response = client_logged_in.post(reverse("registration:ensure-ticket", args=[free_event.pk]))

        assert response.status_code == 200
        assert response.json()["ticket"]["event_id"] == free_event.pk


# =============================================================================
# TestPurchaseViews
# =============================================================================


@pytest.mark.django_db
class TestPurchaseViews:
    def test_purchase_returns_redirect_url(self, client_logged_in, user, paid_event, mock_checkout_stripe):
        response = client_logged_in.post(reverse("registration:purchase", args=[paid_event.pk]))

        assert response.status_code == 200
        body = response.json()
        assert body["redirect_url"] == "https://checkout.stripe.com/c/pay/cs_view_1"
        assert body["state"] == "purchase_pending"
        kwargs = mock_checkout_stripe.create_checkout_session.call_args.kwargs
        assert kwargs["success_url"] == "http://testserver/ticketing/verify/?session_id={CHECKOUT_SESSION_ID}"
        assert kwargs["cancel_url"] == "http://testserver/"
        assert Purchase.objects.get(user=user).stripe_session_id == "cs_view_1"

    def test_purchase_honours_local_cancel_url(self, client_logged_in, paid_event, mock_checkout_stripe):
        client_logged_in.post(
            reverse("registration:purchase", args=[paid_event.pk]),
            {"cancel_url": "/events/paid-summit/"},
        )

        kwargs = mock_checkout_stripe.create_checkout_session.call_args.kwargs
        assert kwargs["cancel_url"] == "http://testserver/events/paid-summit/"

    def test_purchase_rejects_foreign_cancel_url(self, client_logged_in, paid_event, mock_checkout_stripe):
        client_logged_in.post(
            reverse("registration:purchase", args=[paid_event.pk]),
            {"cancel_url": "https://evil.example.net/"},
        )

        kwargs = mock_checkout_stripe.create_checkout_session.call_args.kwargs
        assert kwargs["cancel_url"] == "http://testserver/"

    def test_purchase_free_event_is_400(self, client_logged_in, free_event, mock_checkout_stripe):
        response = client_logged_in.post(reverse("registration:purchase", args=[free_event.pk]))

        assert response.status_code == 400
        assert response.json()["error"] == "NotPayable"

    def test_processor_error_is_502_and_retryable(self, client_logged_in, paid_event, mock_checkout_stripe):
        mock_checkout_stripe.create_checkout_session.side_effect = ProcessorError

        response = client_logged_in.post(reverse("registration:purchase", args=[paid_event.pk]))

        assert response.status_code == 502
        assert response.json()["retryable"] is True


# =============================================================================
# TestVerifyView
# =============================================================================


@pytest.mark.django_db
class TestVerifyView:
    def _purchase(self, user, event):
        return Purchase.objects.create(
            user=user,
            event=event,
            amount_paid=Decimal("99.00"),
            stripe_session_id="cs_view_verify",
        )

    def test_paid_session_returns_ticket(self, user, paid_event, mock_verify_stripe):
        purchase = self._purchase(user, paid_event)
        mock_verify_stripe.retrieve_checkout_session.return_value = SimpleNamespace(
            id="cs_view_verify",
            payment_status="paid",
            status="complete",
            payment_intent="pi_view",
            amount_total=9900,
            metadata={"event_id": str(paid_event.pk), "user_id": str(user.pk)},
        )

        response = Client().get(reverse("registration:verify"), {"session_id": "cs_view_verify"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["purchase_id"] == purchase.pk
        assert body["ticket"]["event_id"] == paid_event.pk

    def test_unpaid_session_is_402(self, user, paid_event, mock_verify_stripe):
        self._purchase(user, paid_event)
        mock_verify_stripe.retrieve_checkout_session.return_value = SimpleNamespace(
            id="cs_view_verify",
            payment_status="unpaid",
            status="open",
            metadata={},
        )

        response = Client().post(reverse("registration:verify"), {"session_id": "cs_view_verify"})

        assert response.status_code == 402
        assert response.json()["session_status"] == "unpaid"
        assert response.json()["retryable"] is True
        assert response.json()["state"] == "purchase_failed"

    def test_unpaid_session_of_paid_purchase_reports_purchased(self, user, paid_event, mock_verify_stripe):
        purchase = self._purchase(user, paid_event)
        Purchase.objects.filter(pk=purchase.pk).update(payment_status=Purchase.PaymentStatus.PAID)
        Attendance.objects.create(user=user, event=paid_event, purchase=purchase)
        mock_verify_stripe.retrieve_checkout_session.return_value = SimpleNamespace(
            id="cs_view_verify",
            payment_status="unpaid",
            status="expired",
            metadata={},
        )

        response = Client().get(reverse("registration:verify"), {"session_id": "cs_view_verify"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["state"] == "purchased"
        assert Purchase.objects.get(pk=purchase.pk).is_paid

    def test_superseded_unpaid_session_uses_current_state(self, client_logged_in, user, paid_event, mock_verify_stripe):
        purchase = self._purchase(user, paid_event)
        Purchase.objects.filter(pk=purchase.pk).update(
            payment_status=Purchase.PaymentStatus.PAID,
            stripe_session_id="cs_view_newer",
        )
        Attendance.objects.create(user=user, event=paid_event, purchase=purchase)
        mock_verify_stripe.retrieve_checkout_session.return_value = SimpleNamespace(
            id="cs_view_older",
            payment_status="unpaid",
            status="expired",
            metadata={"event_id": str(paid_event.pk), "user_id": str(user.pk)},
        )

        response = client_logged_in.get(reverse("registration:verify"), {"session_id": "cs_view_older"})

        assert response.status_code == 200
        assert response.json()["state"] == "purchased"

    def test_missing_session_id_is_404(self, db, mock_verify_stripe):
        response = Client().get(reverse("registration:verify"))

        assert response.status_code == 404
        mock_verify_stripe.retrieve_checkout_session.assert_not_called()


# =============================================================================
# TestTicketViews
# =============================================================================


@pytest.mark.django_db
class TestTicketViews:
    def test_my_tickets(self, client_logged_in, free_event):
        client_logged_in.post(reverse("registration:register", args=[free_event.pk]))

        response = client_logged_in.get(reverse("registration:my-tickets"))

        tickets = response.json()["tickets"]
        assert len(tickets) == 1
        assert tickets[0]["event_title"] == "Free Meetup"

    def test_download_pdf(self, client_logged_in, user, free_event):
        client_logged_in.post(reverse("registration:register", args=[free_event.pk]))
        ticket = Ticket.objects.get(user=user)

        response = client_logged_in.get(reverse("registration:ticket-download", args=[ticket.pk]))

        assert response.status_code == 200
        assert response["Content-Type"] == "application/pdf"
        assert response["Content-Disposition"] == f'attachment; filename="ticket-{ticket.ticket_number}.pdf"'
        assert response.content.startswith(b"%PDF")

    def test_download_other_users_ticket_is_404(self, user, free_event, staff):
        owner = Client()
        owner.force_login(user)
        owner.post(reverse("registration:register", args=[free_event.pk]))
        ticket = Ticket.objects.get(user=user)
        intruder = Client()
        intruder.force_login(staff)

        response = intruder.get(reverse("registration:ticket-download", args=[ticket.pk]))

        assert response.status_code == 404

    def test_check_in_requires_staff(self, client_logged_in, user, free_event):
        client_logged_in.post(reverse("registration:register", args=[free_event.pk]))
        ticket = Ticket.objects.get(user=user)

        response = client_logged_in.post(reverse("registration:check-in"), {"qr_data": ticket.qr_code_data})

        assert response.status_code == 403
        ticket.refresh_from_db()
        assert ticket.is_valid

    def test_staff_check_in_with_json_body(self, user, staff, free_event):
        owner = Client()
        owner.force_login(user)
        owner.post(reverse("registration:register", args=[free_event.pk]))
        ticket = Ticket.objects.get(user=user)
        door = Client()
        door.force_login(staff)

        response = door.post(
            reverse("registration:check-in"),
            data={"qr_data": ticket.qr_code_data},
            content_type="application/json",
        )
        replay = door.post(
            reverse("registration:check-in"),
            data={"qr_data": ticket.qr_code_data},
            content_type="application/json",
        )

        assert response.status_code == 200
        assert response.json()["ticket"]["validation_status"] == "used"
        assert response.json()["holder"] == "viewuser"
        assert replay.status_code == 409
        assert replay.json()["error"] == "TicketNotValid"
