"""
Payment reconciliation, run every 5 minutes by cron through the
reconcile_payments management command:

1. expire abandoned INITIATED bookings and release their promo/wallet holds
2. create partner bookings for AUTHORIZED bookings nobody verified
3. retry PARTNER_FAILED bookings with backoff, dead-lettering after max attempts
   (the wallet share is credited back; the gateway share is refunded by hand)
"""
import logging
import os
from datetime import timedelta

import requests
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from backend.partners.healthians import HealthiansError
from .models import Booking, PartnerRetry
from .services import (
    claim_partner_booking, confirm_booking, create_partner_booking, mark_partner_failed, refund_wallet_amount,
    release_partner_claim, rollback_booking
)
from .state_machine import can_transition, transition

logger = logging.getLogger(__name__)

INITIATED_TTL = timedelta(minutes=30)
AUTHORIZED_STUCK_AFTER = timedelta(minutes=5)
RETRY_DELAYS = [60, 300, 900]  # seconds

EXPIRE_BATCH_SIZE = 50
AUTHORIZED_BATCH_SIZE = 20
RETRY_BATCH_SIZE = 10


def send_dead_letter_alert(booking_id, attempts, last_error):
    """Slack alert if SLACK_WEBHOOK_URL is configured, otherwise a log warning"""
    message = (
        f"*DEAD-LETTER ALERT*\nBooking `{booking_id}` failed after {attempts} partner API attempts.\n"
        f"*Last Error:* {last_error}\n*Action Required:* Manual partner booking or refund needed."
    )
    webhook_url = getattr(settings, 'SLACK_WEBHOOK_URL', os.getenv('SLACK_WEBHOOK_URL', ''))
    if not webhook_url:
        logger.warning(f"SLACK_WEBHOOK_URL not configured. Alert:\n{message}")
        return False

    try:
        response = requests.post(webhook_url, json={'text': message}, timeout=10)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to send Slack alert for booking {booking_id}: {str(e)}")
        return False

    logger.info(f"Slack dead-letter alert sent for booking {booking_id}")
    return True


def expired_initiated_bookings(now=None):
    now = now or timezone.now()
    return Booking.objects.filter(
        payment_status='INITIATED',
        created_at__lt=now - INITIATED_TTL,
    ).order_by('created_at')


def stuck_authorized_bookings(now=None):
    now = now or timezone.now()
    return Booking.objects.filter(
        payment_status='AUTHORIZED',
        partner_booking_id__isnull=True,
        updated_at__lt=now - AUTHORIZED_STUCK_AFTER,
    ).order_by('updated_at')


def due_retries(now=None):
    now = now or timezone.now()
    return PartnerRetry.objects.filter(next_retry_at__lte=now).select_related('booking').order_by('next_retry_at')


def expire_abandoned_bookings(now=None):
    """Returns the number of bookings expired"""
    expired = 0
    for booking in expired_initiated_bookings(now)[:EXPIRE_BATCH_SIZE]:
        try:
            if transition(booking, 'EXPIRED'):
                rollback_booking(booking)
                expired += 1
                logger.info(f"Expired abandoned booking {booking.pk}")
        except Exception as e:
            logger.error(f"Failed to expire booking {booking.pk}: {str(e)}")
    return expired


def process_stuck_authorized(now=None):
    """Returns (confirmed, failed) counts"""
    confirmed = failed = 0
    for booking in stuck_authorized_bookings(now).select_related('user', 'address')[:AUTHORIZED_BATCH_SIZE]:
        if not claim_partner_booking(booking):
            continue

        logger.info(f"Processing stuck AUTHORIZED booking {booking.pk}")
        try:
            partner_booking_id = create_partner_booking(booking)
        except Exception as e:
            message = e.message if isinstance(e, HealthiansError) else str(e)
            logger.error(f"Partner booking failed for {booking.pk}: {message}")
            mark_partner_failed(booking, message)
            failed += 1
            continue

        if confirm_booking(booking, partner_booking_id):
            confirmed += 1
    return confirmed, failed


def retry_partner_bookings(now=None):
    """Returns (confirmed, rescheduled, dead_lettered) counts"""
    now = now or timezone.now()
    confirmed = rescheduled = dead = 0

    for retry in due_retries(now)[:RETRY_BATCH_SIZE]:
        booking = retry.booking

        if retry.attempts >= retry.max_attempts:
            logger.error(f"Booking {booking.pk} dead-lettered after {retry.max_attempts} attempts")
            send_dead_letter_alert(booking.pk, retry.max_attempts, retry.last_error or 'Unknown')
            with transaction.atomic():
                if can_transition(booking.payment_status, 'REFUNDED') and transition(booking, 'REFUNDED'):
                    refund_wallet_amount(booking)
                retry.delete()
            dead += 1
            continue

        if not claim_partner_booking(booking):
            continue

        logger.info(f"Retrying partner booking (attempt {retry.attempts + 1}/{retry.max_attempts}) for {booking.pk}")
        try:
            partner_booking_id = create_partner_booking(booking)
        except Exception as e:
            message = e.message if isinstance(e, HealthiansError) else str(e)
            delay = RETRY_DELAYS[min(retry.attempts, len(RETRY_DELAYS) - 1)]
            retry.attempts += 1
            retry.last_error = message
            retry.next_retry_at = now + timedelta(seconds=delay)
            retry.save(update_fields=['attempts', 'last_error', 'next_retry_at', 'updated_at'])
            release_partner_claim(booking)
            logger.warning(f"Retry failed (attempt {retry.attempts}) for {booking.pk}, next in {delay}s")
            rescheduled += 1
            continue

        if confirm_booking(booking, partner_booking_id):
            confirmed += 1
            logger.info(f"Retry succeeded, booking {booking.pk} confirmed")
    return confirmed, rescheduled, dead
