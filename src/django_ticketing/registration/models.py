"""Attendance, purchase, and ticket models for django-ticketing."""

from django.conf import settings
from django.db import models


class Attendance(models.Model):
    """A user's intent to attend an event.

    Created by a free registration or by a verified payment, and deleted when
    the user unregisters. At most one row exists per ``(user, event)`` pair,
    enforced by a database constraint in addition to the service-level lookup.
    """

    class Status(models.TextChoices):
        """Attendance states for a user and event."""

        GOING = "going", "Going"
        INTERESTED = "interested", "Interested"
        ATTENDED = "attended", "Attended"
        NOT_GOING = "not_going", "Not Going"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="attendances",
    )
    event = models.ForeignKey(
        "ticketing_events.Event",
        on_delete=models.CASCADE,
        related_name="attendances",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.GOING,
    )
    purchase = models.ForeignKey(
        "Purchase",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="attendances",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    CONFIRMED_STATUSES = (Status.GOING, Status.ATTENDED)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "event"],
                name="registration_attendance_unique_user_event",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user} -> {self.event} ({self.status})"

    @property
    def is_confirmed(self) -> bool:
        """Return ``True`` when this attendance entitles the user to a ticket."""
        return self.status in self.CONFIRMED_STATUSES


class Purchase(models.Model):
    """A payment attempt for a paid event and its settlement outcome.

    Purchases are created when a Stripe Checkout session is started and are
    updated in place when the user retries checkout, so repeated clicks never
    produce unbounded rows. They are financial records and are never deleted.
    """

    class PaymentStatus(models.TextChoices):
        """Settlement states for a purchase."""

        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="event_purchases",
    )
    event = models.ForeignKey(
        "ticketing_events.Event",
        on_delete=models.CASCADE,
        related_name="purchases",
    )
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default="USD")
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    stripe_session_id = models.CharField(max_length=255, blank=True, default="")
    stripe_payment_intent_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Set once the checkout session has been paid.",
    )
    ticket_quantity = models.PositiveIntegerField(default=1)
    purchase_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["stripe_session_id"],
                condition=~models.Q(stripe_session_id=""),
                name="registration_purchase_unique_session",
            ),
        ]

    def __str__(self) -> str:
        return f"Purchase {self.pk} ({self.user}, {self.event}, {self.payment_status})"

    @property
    def is_paid(self) -> bool:
        """Return ``True`` once the payment has settled."""
        return self.payment_status == self.PaymentStatus.PAID


class Ticket(models.Model):
    """The redeemable proof of a confirmed attendance or payment.

    Tickets are issued exactly once per ``(user, event)`` pair. The
    ``qr_code_data`` payload is signed so it can be validated at the door
    without a database round trip; ``validation_status`` is still checked live
    when a lookup is possible.
    """

    class ValidationStatus(models.TextChoices):
        """Redemption states for a ticket."""

        VALID = "valid", "Valid"
        USED = "used", "Used"
        EXPIRED = "expired", "Expired"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    event = models.ForeignKey(
        "ticketing_events.Event",
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    ticket_number = models.CharField(
        max_length=50,
        unique=True,
        help_text='Unique ticket number, e.g. "TKT-20270601-A1B2C3D4".',
    )
    qr_code_data = models.TextField(blank=True, default="")
    validation_status = models.CharField(
        max_length=20,
        choices=ValidationStatus.choices,
        default=ValidationStatus.VALID,
    )
    purchase = models.ForeignKey(
        Purchase,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tickets",
    )
    attendance = models.ForeignKey(
        Attendance,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tickets",
    )
    generated_at = models.DateTimeField(auto_now_add=True)
    validated_at = models.DateTimeField(null=True, blank=True)
    validated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="validated_tickets",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "event"],
                name="registration_ticket_unique_user_event",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.ticket_number} ({self.validation_status})"

    @property
    def is_valid(self) -> bool:
        """Return ``True`` when the ticket can still be redeemed."""
        return self.validation_status == self.ValidationStatus.VALID
