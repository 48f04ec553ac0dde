"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.catalog.models import CatalogItem, Category
from backend.parties.models import Patient, Address, Wallet
from backend.parties.wallets import credit_wallet
from backend.parties.referrals import generate_unique_referral_code
from backend.pricing.models import PromoCode
from backend.orders.models import Cart, CartItem, Booking, BookingItem
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def random_mobile():
        """Generate a random 10 digit Indian mobile number"""
        return random.choice('6789') + ''.join(random.choices(string.digits, k=9))

    @staticmethod
    def create_user(mobile=None, name='Test User', password='testpass123', role='USER',
                    email=None, referred_by=None, is_verified=True):
        """Create a test user"""
        if not mobile:
            mobile = TestDataFactory.random_mobile()
            while User.objects.filter(mobile=mobile).exists():
                mobile = TestDataFactory.random_mobile()
        user = User.objects.create_user(
            username=mobile,
            mobile=mobile,
            name=name,
            email=email,
            password=password,
            role=role,
            is_verified=is_verified,
            referred_by=referred_by,
            referral_code=generate_unique_referral_code(name),
        )
        return user

    @staticmethod
    def create_super_admin(**kwargs):
        """Create a SUPER_ADMIN user"""
        kwargs.setdefault('name', 'Admin')
        return TestDataFactory.create_user(role='SUPER_ADMIN', **kwargs)

    @staticmethod
    def create_manager(**kwargs):
        """Create a MANAGER user"""
        kwargs.setdefault('name', 'Manager')
        return TestDataFactory.create_user(role='MANAGER', **kwargs)

    @staticmethod
    def create_wallet(user, balance=Decimal('0.00')):
        """Create a wallet, crediting it through the ledger so both stay in sync"""
        wallet, _ = Wallet.objects.get_or_create(user=user)
        if balance:
            credit_wallet(wallet, balance, description='Test credit', reference_type='ADMIN_ADJUSTMENT',
                          reference_id=f'TEST-{TestDataFactory.random_string(6)}')
            wallet.refresh_from_db()
        return wallet

    @staticmethod
    def create_patient(user, name=None, relation='Self', age=30, gender='Male'):
        """Create a test patient"""
        return Patient.objects.create(
            user=user,
            name=name or user.name or 'Patient',
            relation=relation,
            age=age,
            gender=gender,
        )

    @staticmethod
    def create_address(user, line1='12 MG Road', city='Delhi', pincode='110001', lat=28.6139, long=77.2090):
        """Create a test address"""
        return Address.objects.create(
            user=user,
            line1=line1,
            city=city,
            pincode=pincode,
            lat=lat,
            long=long,
        )

    @staticmethod
    def create_promo(code=None, discount_type='PERCENTAGE', discount_value=Decimal('10'), **kwargs):
        """Create a test promo code"""
        if not code:
            code = f'PROMO{TestDataFactory.random_string(5).upper()}'
        return PromoCode.objects.create(
            code=code.upper(),
            discount_type=discount_type,
            discount_value=discount_value,
            **kwargs
        )

    @staticmethod
    def create_catalog_item(partner_code=None, name=None, type='TEST', partner_price=Decimal('500.00'),
                            display_price=None, is_enabled=True, **kwargs):
        """Create a test catalog item"""
        if not partner_code:
            partner_code = f'HT{TestDataFactory.random_string(6).upper()}'
        return CatalogItem.objects.create(
            partner_code=partner_code,
            name=name or f'Test {partner_code}',
            type=type,
            partner_price=partner_price,
            display_price=display_price if display_price is not None else partner_price,
            is_enabled=is_enabled,
            **kwargs
        )

    @staticmethod
    def create_category(name=None, slug=None, **kwargs):
        """Create a test category"""
        if not name:
            name = f'Category {TestDataFactory.random_string(6)}'
        return Category.objects.create(
            name=name,
            slug=slug or name.lower().replace(' ', '-'),
            **kwargs
        )

    @staticmethod
    def create_cart_item(user, test_code=None, test_name='Complete Blood Count', price=Decimal('500.00'),
                         mrp=None, patient=None):
        """Add an item to the user's cart, creating the cart if needed"""
        cart, _ = Cart.objects.get_or_create(user=user)
        return CartItem.objects.create(
            cart=cart,
            test_code=test_code or f'HT{TestDataFactory.random_string(6).upper()}',
            test_name=test_name,
            price=price,
            mrp=mrp,
            patient=patient,
        )

    @staticmethod
    def create_booking(user, address=None, patient=None, payment_status='INITIATED', status='PENDING',
                       total_amount=Decimal('500.00'), discount_amount=Decimal('0.00'),
                       wallet_amount=Decimal('0.00'), final_amount=None, items=None, **kwargs):
        """
        Create a booking with items.

        items is a list of (test_code, test_name, price) tuples; one item is
        created for the given (or auto-created) patient when omitted.
        """
        if final_amount is None:
            final_amount = total_amount - discount_amount - wallet_amount
        if patient is None:
            patient = TestDataFactory.create_patient(user)
        booking = Booking.objects.create(
            user=user,
            address=address,
            payment_status=payment_status,
            status=status,
            slot_date=kwargs.pop('slot_date', '2026-01-15'),
            slot_time=kwargs.pop('slot_time', '08:00 - 09:00'),
            total_amount=total_amount,
            discount_amount=discount_amount,
            wallet_amount=wallet_amount,
            final_amount=final_amount,
            **kwargs
        )
        for test_code, test_name, price in items or [('HT001', 'Complete Blood Count', total_amount)]:
            BookingItem.objects.create(
                booking=booking,
                patient=patient,
                test_code=test_code,
                test_name=test_name,
                price=price,
            )
        return booking


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
