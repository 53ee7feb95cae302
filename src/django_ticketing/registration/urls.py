"""URL configuration for the registration app.

Mount these under a prefix in the host project::

    urlpatterns = [
        path("ticketing/", include("django_ticketing.registration.urls")),
    ]

The Stripe Checkout success redirect lands on ``verify/``; the URL is built
from the ``registration:verify`` name, so the prefix is free to change.
"""

from django.urls import path

from django_ticketing.registration.views import (
    CheckInView,
    EnsureTicketView,
    MyTicketsView,
    PurchaseView,
    RegisterView,
    StateView,
    TicketDownloadView,
    UnregisterView,
    VerifyView,
)

app_name = "registration"

urlpatterns = [
    path("events/<int:event_id>/register/", RegisterView.as_view(), name="register"),
    path("events/<int:event_id>/purchase/", PurchaseView.as_view(), name="purchase"),
    path("events/<int:event_id>/unregister/", UnregisterView.as_view(), name="unregister"),
    path("events/<int:event_id>/state/", StateView.as_view(), name="state"),
    path("events/<int:event_id>/ensure-ticket/", EnsureTicketView.as_view(), name="ensure-ticket"),
    path("verify/", VerifyView.as_view(), name="verify"),
    path("tickets/", MyTicketsView.as_view(), name="my-tickets"),
    path("tickets/<int:ticket_id>/download/", TicketDownloadView.as_view(), name="ticket-download"),
    path("tickets/check-in/", CheckInView.as_view(), name="check-in"),
]
