"""
Wallet balance movements.

Every change goes through a conditional F() update on Wallet.balance and is
mirrored by a signed WalletLedgerEntry row.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Sum

from .models import Wallet, WalletLedgerEntry

logger = logging.getLogger(__name__)


class InsufficientBalance(Exception):
    """Raised when a debit would take the wallet below zero"""
    pass


def get_or_create_wallet(user):
    wallet, _ = Wallet.objects.get_or_create(user=user)
    return wallet


def wallet_balance_from_ledger(wallet):
    """Sum of all signed ledger amounts for the wallet"""
    total = WalletLedgerEntry.objects.filter(wallet=wallet).aggregate(total=Sum('amount'))['total']
    return total or Decimal('0.00')


def credit_wallet(wallet, amount, description='', reference_type=None, reference_id=None,
                  created_by=None, ip_address=None):
    """Add amount to the wallet and record a CREDIT ledger entry"""
    amount = Decimal(str(amount))
    with transaction.atomic():
        Wallet.objects.filter(pk=wallet.pk).update(balance=F('balance') + amount)
        wallet.refresh_from_db(fields=['balance'])
        entry = WalletLedgerEntry.objects.create(
            wallet=wallet,
            type='CREDIT',
            amount=amount,
            balance_after=wallet.balance,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=created_by,
            ip_address=ip_address,
        )
    logger.info(f"Wallet {wallet.pk} credited {amount} ({reference_type}:{reference_id}), balance {wallet.balance}")
    return entry


def debit_wallet(wallet, amount, description='', reference_type=None, reference_id=None,
                 created_by=None, ip_address=None):
    """
    Subtract amount from the wallet and record a DEBIT ledger entry.

    The update only applies while balance >= amount; otherwise
    InsufficientBalance is raised and nothing is written.
    """
    amount = Decimal(str(amount))
    with transaction.atomic():
        updated = Wallet.objects.filter(pk=wallet.pk, balance__gte=amount).update(
            balance=F('balance') - amount
        )
        if not updated:
            raise InsufficientBalance('Insufficient wallet balance')
        wallet.refresh_from_db(fields=['balance'])
        entry = WalletLedgerEntry.objects.create(
            wallet=wallet,
            type='DEBIT',
            amount=-amount,
            balance_after=wallet.balance,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=created_by,
            ip_address=ip_address,
        )
    logger.info(f"Wallet {wallet.pk} debited {amount} ({reference_type}:{reference_id}), balance {wallet.balance}")
    return entry
