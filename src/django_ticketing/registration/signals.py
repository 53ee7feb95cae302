"""Custom signals for the registration app.

Signals:
    attendance_confirmed: Sent when a new attendance record is created.
        Sender: The ``Attendance`` class.
        Kwargs:
            attendance: The ``Attendance`` instance.
            user: The attending user.
    purchase_paid: Sent when a purchase transitions to PAID status.
        Sender: The ``Purchase`` class.
        Kwargs:
            purchase: The ``Purchase`` instance that was paid.
            user: The user who owns the purchase.
    ticket_issued: Sent when a new ticket is created (not on idempotent reuse).
        Sender: The ``Ticket`` class.
        Kwargs:
            ticket: The ``Ticket`` instance.
            user: The ticket holder.
"""

from django.dispatch import Signal

attendance_confirmed = Signal()
purchase_paid = Signal()
ticket_issued = Signal()
