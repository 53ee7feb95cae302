"""Management command to repair registrations left half-finished.

A user who pays but never returns from Stripe leaves a ``pending`` purchase,
and a ticket step that failed after registration leaves an attendee without a
ticket. Both are completed by re-running the idempotent service operations.

Usage::

    # Verify stale pending purchases and issue missing tickets
    manage.py reconcile_registrations

    # Only purchases untouched for two hours, for one event
    manage.py reconcile_registrations --older-than 120 --event 42

    # Report what would be done without changing anything
    manage.py reconcile_registrations --dry-run
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Exists, OuterRef
from django.utils import timezone

from django_ticketing.events.models import Event
from django_ticketing.registration.exceptions import RegistrationError
from django_ticketing.registration.models import Attendance, Purchase, Ticket
from django_ticketing.registration.services.tickets import TicketService
from django_ticketing.registration.services.verification import PaymentVerified, VerificationService
from django_ticketing.settings import get_config

if TYPE_CHECKING:
    import argparse

    from django.db.models import QuerySet


class Command(BaseCommand):
    """Verify stale pending purchases and issue missing tickets."""

    help = "Verify stale pending purchases with Stripe and issue missing tickets"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument(
            "--older-than",
            type=int,
            default=None,
            dest="older_than",
            help="Only verify purchases pending for at least this many minutes "
            "(default: DJANGO_TICKETING['reconcile_after_minutes']).",
        )
        parser.add_argument(
            "--event",
            type=int,
            default=None,
            help="Restrict reconciliation to one event id.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="List what would be reconciled without calling Stripe or writing.",
        )

    def handle(self, **options: object) -> None:
        """Execute the reconciliation."""
        older_than = options["older_than"]
        if older_than is None:
            older_than = get_config().reconcile_after_minutes
        if not isinstance(older_than, int) or older_than < 0:
            msg = "--older-than must be a non-negative number of minutes"
            raise CommandError(msg)

        event_id = options["event"]
        if event_id is not None and not Event.objects.filter(pk=event_id).exists():
            msg = f"Event with id {event_id} not found"
            raise CommandError(msg)

        dry_run = bool(options["dry_run"])
        cutoff = timezone.now() - timedelta(minutes=older_than)

        pending = Purchase.objects.filter(
            payment_status=Purchase.PaymentStatus.PENDING,
            updated_at__lte=cutoff,
        ).exclude(stripe_session_id="")
        if event_id is not None:
            pending = pending.filter(event_id=event_id)

        verified, incomplete, errors = self._verify_pending(pending.order_by("updated_at"), dry_run=dry_run)
        issued, issue_errors = self._issue_missing_tickets(event_id, dry_run=dry_run)

        prefix = "[dry run] " if dry_run else ""
        self.stdout.write(
            self.style.SUCCESS(
                f"{prefix}Verified {verified} paid, "
                f"{incomplete} incomplete, "
                f"{errors} failed verification; "
                f"issued {issued} missing tickets ({issue_errors} failed)"
            )
        )

    def _verify_pending(self, pending: QuerySet[Purchase], *, dry_run: bool) -> tuple[int, int, int]:
        verified = incomplete = errors = 0
        for purchase in pending:
            if dry_run:
                self.stdout.write(f"Would verify purchase {purchase.pk} (session {purchase.stripe_session_id})")
                continue
            try:
                result = VerificationService.verify(purchase.stripe_session_id)
            except RegistrationError as exc:
                errors += 1
                self.stderr.write(f"Purchase {purchase.pk}: {exc.code}: {exc.message}")
                continue
            if isinstance(result, PaymentVerified):
                verified += 1
            else:
                incomplete += 1
        return verified, incomplete, errors

    def _issue_missing_tickets(self, event_id: int | None, *, dry_run: bool) -> tuple[int, int]:
        has_ticket = Exists(Ticket.objects.filter(user=OuterRef("user"), event=OuterRef("event")))

        attendances = Attendance.objects.filter(status__in=Attendance.CONFIRMED_STATUSES).filter(~has_ticket)
        purchases = Purchase.objects.filter(payment_status=Purchase.PaymentStatus.PAID).filter(~has_ticket)
        if event_id is not None:
            attendances = attendances.filter(event_id=event_id)
            purchases = purchases.filter(event_id=event_id)

        pairs: dict[tuple[int, int], Attendance | Purchase] = {}
        for row in [*attendances.select_related("user", "event"), *purchases.select_related("user", "event")]:
            pairs.setdefault((row.user_id, row.event_id), row)

        issued = errors = 0
        for row in pairs.values():
            if dry_run:
                self.stdout.write(f"Would issue a ticket to user {row.user_id} for event {row.event_id}")
                continue
            try:
                TicketService.ensure_ticket(row.user, row.event)
            except RegistrationError as exc:
                errors += 1
                self.stderr.write(f"User {row.user_id}, event {row.event_id}: {exc.code}: {exc.message}")
                continue
            issued += 1
        return issued, errors
