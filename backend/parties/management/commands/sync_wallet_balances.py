from django.core.management.base import BaseCommand
from django.db import transaction
from decimal import Decimal
from backend.parties.models import Wallet
from backend.parties.wallets import wallet_balance_from_ledger

TOLERANCE = Decimal('0.01')


class Command(BaseCommand):
    help = 'Recomputes wallet balances from the ledger and fixes any drift'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Perform a dry run without saving changes',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))

        wallets = Wallet.objects.select_related('user').order_by('id')
        self.stdout.write(f"Checking {wallets.count()} wallets...")

        fixed = 0
        with transaction.atomic():
            for wallet in wallets:
                ledger_balance = wallet_balance_from_ledger(wallet)
                if abs(wallet.balance - ledger_balance) <= TOLERANCE:
                    continue

                self.stdout.write(self.style.NOTICE(
                    f"  - Wallet {wallet.id} ({wallet.user}): {wallet.balance} -> {ledger_balance}"
                ))
                fixed += 1
                if not dry_run:
                    wallet.balance = ledger_balance
                    wallet.save(update_fields=['balance', 'updated_at'])

            if dry_run:
                self.stdout.write(self.style.WARNING(f"\nDry run complete. {fixed} wallets would be updated."))
                transaction.set_rollback(True)
            else:
                self.stdout.write(self.style.SUCCESS(f"\n{fixed} wallets synced with the ledger."))
