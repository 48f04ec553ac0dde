"""
Test suite for Pricing module
Tests: Discount calculation, promo validation rules, redemption locking, promo endpoints
"""
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.pricing.models import PromoCode, PromoRedemption
from backend.pricing.promos import (
    PromoError, available_promos, calculate_discount, lock_promo, release_promo, validate_promo
)


class CalculateDiscountTests(TestCase):

    def test_percentage(self):
        promo = TestDataFactory.create_promo(discount_type='PERCENTAGE', discount_value=Decimal('10'))
        self.assertEqual(calculate_discount(promo, Decimal('999')), Decimal('99.90'))

    def test_percentage_capped(self):
        promo = TestDataFactory.create_promo(discount_value=Decimal('50'), max_discount=Decimal('200'))
        self.assertEqual(calculate_discount(promo, Decimal('1000')), Decimal('200.00'))

    def test_flat_never_exceeds_total(self):
        promo = TestDataFactory.create_promo(discount_type='FLAT', discount_value=Decimal('500'))
        self.assertEqual(calculate_discount(promo, Decimal('300')), Decimal('300.00'))

    def test_below_minimum_order(self):
        promo = TestDataFactory.create_promo(discount_type='FLAT', discount_value=Decimal('100'),
                                             min_order_value=Decimal('1000'))
        self.assertEqual(calculate_discount(promo, Decimal('999')), Decimal('0.00'))


class ValidatePromoTests(TestCase):
    """Test promo eligibility rules"""

    def setUp(self):
        self.user = TestDataFactory.create_user()

    def assertPromoError(self, promo, amount, message):
        with self.assertRaises(PromoError) as ctx:
            validate_promo(promo, self.user, amount)
        self.assertEqual(ctx.exception.message, message)

    def test_unknown_or_inactive(self):
        self.assertPromoError(None, 500, 'Invalid or inactive promo code')
        promo = TestDataFactory.create_promo(is_active=False)
        self.assertPromoError(promo, 500, 'Invalid or inactive promo code')

    def test_expired(self):
        promo = TestDataFactory.create_promo(expires_at=timezone.now() - timedelta(days=1))
        self.assertPromoError(promo, 500, 'Promo code expired')

    def test_not_started(self):
        promo = TestDataFactory.create_promo(starts_at=timezone.now() + timedelta(days=1))
        self.assertPromoError(promo, 500, 'Promo code not yet active')

    def test_global_limit(self):
        promo = TestDataFactory.create_promo(max_redemptions=5, redeemed_count=5)
        self.assertPromoError(promo, 500, 'Promo usage limit reached')

    def test_minimum_order_message(self):
        promo = TestDataFactory.create_promo(min_order_value=Decimal('1000'))
        self.assertPromoError(promo, 500, 'Minimum order value of ₹1000 required')

    def test_per_user_limit(self):
        promo = TestDataFactory.create_promo()
        booking = TestDataFactory.create_booking(self.user)
        PromoRedemption.objects.create(user=self.user, promo_code=promo, booking=booking)
        self.assertPromoError(promo, 500, 'You have already used this promo code')

    def test_valid(self):
        promo = TestDataFactory.create_promo()
        validate_promo(promo, self.user, 500)


class PromoLockingTests(TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user()

    def test_lock_increments_until_limit(self):
        promo = TestDataFactory.create_promo(max_redemptions=1)
        lock_promo(promo)
        self.assertEqual(promo.redeemed_count, 1)
        with self.assertRaises(PromoError):
            lock_promo(promo)

    def test_release_returns_capacity(self):
        promo = TestDataFactory.create_promo(max_redemptions=1)
        lock_promo(promo)
        booking = TestDataFactory.create_booking(self.user)
        PromoRedemption.objects.create(user=self.user, promo_code=promo, booking=booking)

        self.assertTrue(release_promo(booking))
        promo.refresh_from_db()
        self.assertEqual(promo.redeemed_count, 0)
        self.assertFalse(PromoRedemption.objects.exists())
        self.assertFalse(release_promo(booking))

    def test_available_promos(self):
        usable = TestDataFactory.create_promo(code='USABLE')
        TestDataFactory.create_promo(code='EXPIRED', expires_at=timezone.now() - timedelta(hours=1))
        TestDataFactory.create_promo(code='FULL', max_redemptions=1, redeemed_count=1)
        used = TestDataFactory.create_promo(code='USED')
        PromoRedemption.objects.create(user=self.user, promo_code=used,
                                       booking=TestDataFactory.create_booking(self.user))

        self.assertEqual(list(available_promos(self.user)), [usable])


class PromoEndpointTests(TestCase):
    """Test the storefront promo endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.promo = TestDataFactory.create_promo(code='SAVE10', discount_value=Decimal('10'),
                                                  description='10% off')

    def test_validate(self):
        response = self.client.post('/api/promos/validate/', {'code': 'save10', 'cartAmount': 1000}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['valid'])
        self.assertEqual(response.data['discountAmount'], 100.0)
        self.assertEqual(response.data['finalAmount'], 900.0)
        self.assertEqual(response.data['code'], 'SAVE10')

    def test_validate_invalid_amount(self):
        response = self.client.post('/api/promos/validate/', {'code': 'SAVE10', 'cartAmount': '1000'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_validate_rejected_promo(self):
        response = self.client.post('/api/promos/validate/', {'code': 'NOPE', 'cartAmount': 1000}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['valid'])

    def test_available(self):
        response = self.client.get('/api/promos/available/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([p['code'] for p in response.data], ['SAVE10'])
        self.assertNotIn('redeemed_count', response.data[0])

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/promos/available/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class AdminPromoTests(TestCase):
    """Test promo management by super admins"""

    def setUp(self):
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_create(self):
        response = self.client.post('/api/admin/promos/', {
            'code': 'welcome50',
            'discountType': 'FLAT',
            'discountValue': 50,
            'minOrderValue': 300,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        promo = PromoCode.objects.get(code='WELCOME50')
        self.assertEqual(promo.min_order_value, Decimal('300'))
        self.assertTrue(AuditLog.objects.filter(action='CREATE', entity='PromoCode').exists())

    def test_create_duplicate(self):
        TestDataFactory.create_promo(code='DUP')
        response = self.client.post('/api/admin/promos/', {
            'code': 'dup', 'discountType': 'FLAT', 'discountValue': 50,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_create_missing_fields(self):
        response = self.client.post('/api/admin/promos/', {'code': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_bad_type(self):
        response = self.client.post('/api/admin/promos/', {
            'code': 'X', 'discountType': 'BOGO', 'discountValue': 50,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list(self):
        TestDataFactory.create_promo()
        response = self.client.get('/api/admin/promos/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 1)

    def test_update(self):
        promo = TestDataFactory.create_promo()
        response = self.client.put(f'/api/admin/promos/{promo.id}/', {
            'isActive': False, 'expiresAt': '2030-01-01T00:00:00Z'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        promo.refresh_from_db()
        self.assertFalse(promo.is_active)
        self.assertEqual(promo.expires_at.year, 2030)
        self.assertTrue(AuditLog.objects.filter(action='UPDATE', entity='PromoCode').exists())

    def test_update_invalid_expiry(self):
        promo = TestDataFactory.create_promo()
        response = self.client.put(f'/api/admin/promos/{promo.id}/', {'expiresAt': 'soon'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_manager_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_manager())
        response = self.client.get('/api/admin/promos/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
