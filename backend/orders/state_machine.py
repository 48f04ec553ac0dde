"""
Booking payment state machine.

Every payment_status change goes through transition(), a conditional UPDATE
keyed on the status the caller last saw, so two workers racing on the same
booking cannot both move it.
"""
import logging

from django.utils import timezone

from .models import Booking

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    'INITIATED': {'AUTHORIZED', 'FAILED', 'EXPIRED', 'PAID'},
    'AUTHORIZED': {'CONFIRMED', 'PARTNER_FAILED'},
    'PAID': {'CONFIRMED', 'PARTNER_FAILED'},
    'PARTNER_FAILED': {'CONFIRMED', 'REFUNDED'},
    'CONFIRMED': set(),
    'FAILED': set(),
    'CANCELLED': set(),
    'EXPIRED': set(),
    'REFUNDED': set(),
}

TERMINAL_STATES = {state for state, targets in VALID_TRANSITIONS.items() if not targets}


class InvalidTransition(Exception):
    def __init__(self, from_status, to_status):
        super().__init__(f'Invalid payment state transition: {from_status} -> {to_status}')
        self.from_status = from_status
        self.to_status = to_status


def can_transition(from_status, to_status):
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def assert_transition(from_status, to_status):
    if not can_transition(from_status, to_status):
        raise InvalidTransition(from_status, to_status)


def transition(booking, to_status, **fields):
    """
    Move booking from its current payment_status to to_status.

    Extra fields are written in the same UPDATE. Returns True if the row
    moved; False if another writer changed the status first. The in-memory
    booking is updated only when the row moved.
    """
    from_status = booking.payment_status
    assert_transition(from_status, to_status)

    values = dict(fields, payment_status=to_status, updated_at=timezone.now())
    updated = Booking.objects.filter(pk=booking.pk, payment_status=from_status).update(**values)
    if not updated:
        logger.warning(f"Booking {booking.pk} left {from_status} before {to_status} could be applied")
        return False

    for name, value in values.items():
        setattr(booking, name, value)
    logger.info(f"Booking {booking.pk}: {from_status} -> {to_status}")
    return True
