"""Django admin configuration for the events app."""

from django.contrib import admin

from django_ticketing.events.models import Event


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    """Admin interface for managing events.

    Provides filtering by status, search by title and location, and
    auto-population of the slug from the event title.
    """

    list_display = ("title", "organizer", "starts_at", "price", "capacity", "status")
    list_filter = ("status",)
    search_fields = ("title", "location")
    prepopulated_fields = {"slug": ("title",)}
