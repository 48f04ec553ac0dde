from django.core.management.base import BaseCommand
from django.utils import timezone

from backend.orders.reconciler import (
    due_retries, expire_abandoned_bookings, expired_initiated_bookings, process_stuck_authorized,
    retry_partner_bookings, stuck_authorized_bookings
)

STEPS = ['expire', 'authorized', 'retry']


class Command(BaseCommand):
    help = 'Expires abandoned checkouts, completes stuck payments and retries failed partner bookings'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only report how many bookings each step would pick up',
        )
        parser.add_argument(
            '--step',
            choices=STEPS,
            help='Run a single step instead of all three',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        steps = [options['step']] if options['step'] else STEPS
        now = timezone.now()
        started = timezone.now()

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))
            if 'expire' in steps:
                self.stdout.write(f"Abandoned INITIATED bookings: {expired_initiated_bookings(now).count()}")
            if 'authorized' in steps:
                self.stdout.write(f"Stuck AUTHORIZED bookings: {stuck_authorized_bookings(now).count()}")
            if 'retry' in steps:
                self.stdout.write(f"Partner retries due: {due_retries(now).count()}")
            return

        if 'expire' in steps:
            expired = expire_abandoned_bookings(now)
            self.stdout.write(f"Expired {expired} abandoned bookings")

        if 'authorized' in steps:
            confirmed, failed = process_stuck_authorized(now)
            self.stdout.write(f"Stuck AUTHORIZED: {confirmed} confirmed, {failed} queued for retry")

        if 'retry' in steps:
            confirmed, rescheduled, dead = retry_partner_bookings(now)
            self.stdout.write(f"Partner retries: {confirmed} confirmed, {rescheduled} rescheduled, {dead} dead-lettered")

        elapsed = (timezone.now() - started).total_seconds()
        self.stdout.write(self.style.SUCCESS(f"Reconciliation complete in {elapsed:.2f}s"))
