import os

from django.core.management.base import BaseCommand
from django.db import transaction

from backend.core.models import User, SystemConfig
from backend.parties.models import Wallet
from backend.parties.referrals import (
    CONFIG_KEY_REFEREE_BONUS, CONFIG_KEY_REFERRER_BONUS, DEFAULT_REFEREE_BONUS, DEFAULT_REFERRER_BONUS,
    generate_unique_referral_code
)

ADMIN_MOBILE = '9999999999'
ADMIN_EMAIL = 'admin@docnow.in'

DEFAULT_CONFIGS = [
    (CONFIG_KEY_REFEREE_BONUS, str(DEFAULT_REFEREE_BONUS), 'Referee signup bonus'),
    (CONFIG_KEY_REFERRER_BONUS, str(DEFAULT_REFERRER_BONUS), 'Referrer first order bonus'),
]


class Command(BaseCommand):
    help = 'Seeds the super admin, referral configs, missing referral codes and wallets (safe to re-run)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--admin-password',
            default=os.getenv('SEED_ADMIN_PASSWORD', 'Admin@123'),
            help='Password for the super admin if one has to be created',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        self.seed_admin(options['admin_password'])
        self.seed_configs()
        self.fill_referral_codes()
        self.fill_wallets()
        self.stdout.write(self.style.SUCCESS('Seed complete'))

    def seed_admin(self, password):
        if User.objects.filter(role='SUPER_ADMIN').exists():
            self.stdout.write('SUPER_ADMIN already exists, skipping...')
            return

        admin = User.objects.filter(mobile=ADMIN_MOBILE).first()
        if admin is None:
            admin = User(username=ADMIN_MOBILE, mobile=ADMIN_MOBILE,
                         referral_code=generate_unique_referral_code('ADMIN'))
        admin.email = ADMIN_EMAIL
        admin.name = 'Super Admin'
        admin.role = 'SUPER_ADMIN'
        admin.status = 'ACTIVE'
        admin.is_verified = True
        admin.set_password(password)
        admin.save()
        Wallet.objects.get_or_create(user=admin)

        self.stdout.write(self.style.SUCCESS(f'SUPER_ADMIN created: mobile {ADMIN_MOBILE}, email {ADMIN_EMAIL}'))

    def seed_configs(self):
        for key, value, description in DEFAULT_CONFIGS:
            _, created = SystemConfig.objects.get_or_create(
                key=key,
                defaults={'value': value, 'description': description}
            )
            if created:
                self.stdout.write(f'Config "{key}" = {value}')

    def fill_referral_codes(self):
        users = User.objects.filter(referral_code__isnull=True)
        count = 0
        for user in users:
            user.referral_code = generate_unique_referral_code(user.name)
            user.save(update_fields=['referral_code'])
            count += 1
        self.stdout.write(f'Generated referral codes for {count} users')

    def fill_wallets(self):
        users = User.objects.filter(wallet__isnull=True)
        count = 0
        for user in users:
            Wallet.objects.create(user=user)
            count += 1
        self.stdout.write(f'Created wallets for {count} users')
