"""JSON views for the registration app.

Thin adapters over :class:`RegistrationService`: each view calls one facade
operation and serializes the result. Service errors are translated into JSON
error bodies carrying the exception's HTTP status, machine-readable code, and
``retryable`` flag.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import HttpResponse, JsonResponse
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme
from django.views import View

from django_ticketing.registration.exceptions import RegistrationError, Unauthenticated
from django_ticketing.registration.models import Ticket
from django_ticketing.registration.services.registration import RegistrationService, RegistrationState
from django_ticketing.registration.services.tickets import TicketService
from django_ticketing.registration.services.verification import PaymentVerified

if TYPE_CHECKING:
    from django.http import HttpRequest

    from django_ticketing.registration.models import Attendance

logger = logging.getLogger(__name__)

_CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def error_response(exc: RegistrationError) -> JsonResponse:
    """Serialize a registration error with its HTTP status."""
    return JsonResponse(
        {"error": exc.code, "message": exc.message, "retryable": exc.retryable},
        status=exc.status_code,
    )


def _request_data(request: HttpRequest) -> dict[str, object]:
    """Return the POST body as a dict, accepting form or JSON encoding."""
    if request.content_type == "application/json":
        try:
            data = json.loads(request.body or b"{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    return request.POST.dict()


def _ticket_payload(ticket: Ticket) -> dict[str, object]:
    return {
        "id": ticket.pk,
        "ticket_number": ticket.ticket_number,
        "event_id": ticket.event_id,
        "event_title": ticket.event.title,
        "validation_status": ticket.validation_status,
        "qr_code_data": ticket.qr_code_data,
        "download_url": reverse("registration:ticket-download", kwargs={"ticket_id": ticket.pk}),
    }


def _attendance_payload(attendance: Attendance) -> dict[str, object]:
    return {
        "id": attendance.pk,
        "event_id": attendance.event_id,
        "status": attendance.status,
        "purchase_id": attendance.purchase_id,
    }


class RegistrationErrorMixin:
    """Translate :class:`RegistrationError` raised by a handler into JSON."""

    def dispatch(self, request: HttpRequest, *args: str, **kwargs: str) -> HttpResponse:
        """Run the handler and convert service errors to error responses."""
        try:
            return super().dispatch(request, *args, **kwargs)  # type: ignore[misc]
        except RegistrationError as exc:
            logger.info("%s %s failed: %s (%s)", request.method, request.path, exc.code, exc.message)
            return error_response(exc)


class JsonLoginRequiredMixin(LoginRequiredMixin):
    """Login requirement that answers anonymous users with a JSON 401."""

    def handle_no_permission(self) -> JsonResponse:
        """Return an ``Unauthenticated`` error instead of a login redirect."""
        return error_response(Unauthenticated())


class RegisterView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Register the current user for a free event."""

    http_method_names = ["post"]

    def post(self, request: HttpRequest, event_id: int) -> JsonResponse:
        """Create (or return) the attendance and its ticket."""
        attendance = RegistrationService.register(request.user, event_id)
        ticket = TicketService.get_existing(request.user, attendance.event)
        state = RegistrationState.REGISTERED if attendance.purchase_id is None else RegistrationState.PURCHASED
        return JsonResponse(
            {
                "state": state,
                "attendance": _attendance_payload(attendance),
                "ticket": _ticket_payload(ticket) if ticket is not None else None,
            },
        )


class PurchaseView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Start a Stripe Checkout for a paid event.

    The response carries the hosted checkout ``redirect_url`` the client must
    follow. Stripe sends the user back to :class:`VerifyView` with the session
    id on success, or to the optional ``cancel_url`` (defaulting to the site
    root) when checkout is abandoned.
    """

    http_method_names = ["post"]

    def post(self, request: HttpRequest, event_id: int) -> JsonResponse:
        """Create the checkout session and return where to redirect."""
        success_url = request.build_absolute_uri(reverse("registration:verify"))
        success_url = f"{success_url}?session_id={_CHECKOUT_SESSION_PLACEHOLDER}"

        cancel_url = str(_request_data(request).get("cancel_url") or "")
        if not cancel_url or not url_has_allowed_host_and_scheme(
            cancel_url,
            allowed_hosts={request.get_host()},
            require_https=request.is_secure(),
        ):
            cancel_url = request.build_absolute_uri("/")
        else:
            cancel_url = request.build_absolute_uri(cancel_url)

        checkout = RegistrationService.purchase(
            request.user,
            event_id,
            success_url=success_url,
            cancel_url=cancel_url,
        )
        return JsonResponse(
            {
                "state": RegistrationState.PURCHASE_PENDING,
                "redirect_url": checkout.redirect_url,
                "session_id": checkout.session_id,
                "purchase_id": checkout.purchase.pk,
            },
        )


class UnregisterView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Remove the current user's attendance. Idempotent."""

    http_method_names = ["post"]

    def post(self, request: HttpRequest, event_id: int) -> JsonResponse:  # noqa: D102
        RegistrationService.unregister(request.user, event_id)
        return JsonResponse({"state": RegistrationState.NONE})


class StateView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Report the current user's registration state for an event."""

    http_method_names = ["get"]

    def get(self, request: HttpRequest, event_id: int) -> JsonResponse:  # noqa: D102
        state = RegistrationService.get_state(request.user, event_id)
        return JsonResponse({"event_id": event_id, "state": state})


class EnsureTicketView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Issue a missing ticket for a confirmed registration or paid purchase."""

    http_method_names = ["post"]

    def post(self, request: HttpRequest, event_id: int) -> JsonResponse:  # noqa: D102
        ticket = RegistrationService.ensure_ticket(request.user, event_id)
        return JsonResponse({"ticket": _ticket_payload(ticket)})


class VerifyView(RegistrationErrorMixin, View):
    """Landing endpoint for the Stripe Checkout success redirect.

    Accepts the session id as a query parameter (the redirect itself) or in a
    POST body (clients re-checking later). Login is not required: the session
    id is re-verified with Stripe and correlated to its purchase server-side.
    """

    http_method_names = ["get", "post"]

    def get(self, request: HttpRequest) -> JsonResponse:  # noqa: D102
        return self._verify(request, str(request.GET.get("session_id", "")).strip())

    def post(self, request: HttpRequest) -> JsonResponse:  # noqa: D102
        session_id = request.GET.get("session_id") or _request_data(request).get("session_id") or ""
        return self._verify(request, str(session_id).strip())

    @staticmethod
    def _verify(request: HttpRequest, session_id: str) -> JsonResponse:
        result = RegistrationService.verify_after_redirect(session_id)
        if isinstance(result, PaymentVerified):
            return JsonResponse(
                {
                    "success": True,
                    "state": RegistrationState.PURCHASED,
                    "purchase_id": result.purchase_id,
                    "event_id": result.event_id,
                    "newly_paid": result.newly_paid,
                    "ticket": _ticket_payload(result.ticket) if result.ticket is not None else None,
                },
            )
        state = RegistrationService.get_purchase_state(result.purchase_id, user=request.user, event_id=result.event_id)
        if state == RegistrationState.PURCHASED:
            return JsonResponse(
                {
                    "success": True,
                    "state": state,
                    "purchase_id": result.purchase_id,
                    "event_id": result.event_id,
                    "session_status": result.session_status,
                    "message": "This session was not paid, but the event is already purchased.",
                },
            )
        return JsonResponse(
            {
                "success": False,
                "state": state,
                "purchase_id": result.purchase_id,
                "event_id": result.event_id,
                "session_status": result.session_status,
                "message": "Payment was not completed. You can retry checkout.",
                "retryable": True,
            },
            status=402,
        )


class MyTicketsView(JsonLoginRequiredMixin, View):
    """List the current user's tickets."""

    http_method_names = ["get"]

    def get(self, request: HttpRequest) -> JsonResponse:  # noqa: D102
        tickets = Ticket.objects.filter(user=request.user).select_related("event").order_by("event__starts_at")
        return JsonResponse({"tickets": [_ticket_payload(ticket) for ticket in tickets]})


class TicketDownloadView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Download one of the current user's tickets as a PDF."""

    http_method_names = ["get"]

    def get(self, request: HttpRequest, ticket_id: int) -> HttpResponse:  # noqa: D102
        filename, pdf = RegistrationService.download_ticket(request.user, ticket_id)
        response = HttpResponse(pdf, content_type="application/pdf")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response


class CheckInView(JsonLoginRequiredMixin, RegistrationErrorMixin, View):
    """Redeem a scanned ticket at the door. Staff only."""

    http_method_names = ["post"]

    def dispatch(self, request: HttpRequest, *args: str, **kwargs: str) -> HttpResponse:
        """Reject signed-in users who are not staff."""
        if request.user.is_authenticated and not request.user.is_staff:
            return JsonResponse(
                {"error": "PermissionDenied", "message": "Staff access is required.", "retryable": False},
                status=403,
            )
        return super().dispatch(request, *args, **kwargs)

    def post(self, request: HttpRequest) -> JsonResponse:  # noqa: D102
        qr_data = str(_request_data(request).get("qr_data") or "").strip()
        ticket = TicketService.check_in(qr_data, staff_user=request.user)
        return JsonResponse(
            {
                "ticket": _ticket_payload(ticket),
                "holder": ticket.user.get_username(),
                "validated_at": ticket.validated_at.isoformat() if ticket.validated_at else None,
            },
        )
