"""Event model for django-ticketing."""

from decimal import Decimal

from django.conf import settings
from django.db import models


class Event(models.Model):
    """A listed event that users can register for or buy a ticket to.

    Events are owned by an organizer and managed elsewhere in the platform;
    the registration pipeline only reads them. A ``price`` of ``None`` or zero
    marks a free event, and a ``capacity`` of ``None`` means unlimited seats.
    """

    class Status(models.TextChoices):
        """Publication states for an event."""

        DRAFT = "draft", "Draft"
        PUBLISHED = "published", "Published"
        CANCELLED = "cancelled", "Cancelled"
        COMPLETED = "completed", "Completed"

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="organized_events",
    )
    title = models.CharField(max_length=300)
    slug = models.SlugField(max_length=300, blank=True, default="")
    description = models.TextField(blank=True, default="")
    short_description = models.CharField(max_length=500, blank=True, default="")
    location = models.CharField(max_length=300, blank=True, default="")
    address = models.CharField(max_length=500, blank=True, default="")
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField(null=True, blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Ticket price. Empty or zero means the event is free.",
    )
    capacity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum number of attendees. Empty means unlimited.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PUBLISHED,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["starts_at", "title"]

    def __str__(self) -> str:
        return self.title

    @property
    def is_free(self) -> bool:
        """Return ``True`` when no payment is required to attend."""
        return self.price is None or self.price <= Decimal("0.00")

    @property
    def is_open_for_registration(self) -> bool:
        """Return ``True`` when the event accepts new registrations and purchases."""
        return self.status == self.Status.PUBLISHED
