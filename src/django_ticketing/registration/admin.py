"""Django admin configuration for the registration app."""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.contrib import admin, messages
from django.utils import timezone

from django_ticketing.registration.models import Attendance, Purchase, Ticket

if TYPE_CHECKING:
    from django.db.models import QuerySet
    from django.http import HttpRequest


@admin.register(Attendance)
class AttendanceAdmin(admin.ModelAdmin):
    """Admin interface for attendance records.

    Filterable by event and status; the linked purchase is shown read-only
    because it is set by payment verification.
    """

    list_display = ("user", "event", "status", "purchase", "created_at")
    list_filter = ("status", "event")
    search_fields = ("user__username", "user__email", "event__title")
    readonly_fields = ("purchase", "created_at", "updated_at")
    list_select_related = ("user", "event")


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    """Read-only admin for purchases.

    Purchases are the local record of money taken through Stripe, so they
    are never created, edited, or deleted by hand.
    """

    list_display = ("pk", "user", "event", "amount_paid", "currency", "payment_status", "purchase_date")
    list_filter = ("payment_status", "event")
    search_fields = ("user__username", "user__email", "stripe_session_id", "stripe_payment_intent_id")
    readonly_fields = (
        "user",
        "event",
        "amount_paid",
        "currency",
        "payment_status",
        "stripe_session_id",
        "stripe_payment_intent_id",
        "ticket_quantity",
        "purchase_date",
        "created_at",
        "updated_at",
    )
    list_select_related = ("user", "event")

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: HttpRequest, obj: Purchase | None = None) -> bool:  # noqa: ARG002, D102
        return False

    def has_delete_permission(self, request: HttpRequest, obj: Purchase | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    """Admin interface for issued tickets.

    Tickets are issued by the registration services; staff can only look
    them up and mark them used at the door.
    """

    list_display = ("ticket_number", "user", "event", "validation_status", "generated_at", "validated_at")
    list_filter = ("validation_status", "event")
    search_fields = ("ticket_number", "user__username", "user__email")
    readonly_fields = (
        "ticket_number",
        "user",
        "event",
        "qr_code_data",
        "purchase",
        "attendance",
        "generated_at",
        "validated_at",
        "validated_by",
    )
    list_select_related = ("user", "event")
    actions = ("mark_used",)

    def has_add_permission(self, request: HttpRequest) -> bool:  # noqa: ARG002, D102
        return False

    @admin.action(description="Mark selected tickets as used")
    def mark_used(self, request: HttpRequest, queryset: QuerySet[Ticket]) -> None:
        """Redeem the selected valid tickets on behalf of the current staff user."""
        updated = queryset.filter(validation_status=Ticket.ValidationStatus.VALID).update(
            validation_status=Ticket.ValidationStatus.USED,
            validated_at=timezone.now(),
            validated_by=request.user,
            updated_at=timezone.now(),
        )
        self.message_user(request, f"{updated} ticket(s) marked as used.", messages.SUCCESS)
