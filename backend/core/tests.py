"""
Test suite for Core module
Tests: Signup/login/reset OTP flows, permissions, admin users/config/audit, throttled responses, seed command
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import Mock, patch

from django.core.cache import cache
from django.core.management import call_command
from django.db import IntegrityError
from django.test import TestCase, RequestFactory
from django.utils import timezone
from rest_framework import status
from rest_framework.exceptions import NotFound, Throttled

from backend.core.throttling import (
    BookingStatusThrottle, DEFAULT_THROTTLE_MESSAGE, PaymentInitiateThrottle, api_exception_handler
)
from backend.core.models import User, OTPCode, SystemConfig, AuditLog, CallbackRequest
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log, get_client_ip, get_config_value
from backend.parties.models import Wallet, ReferralReward


def _otp(mobile, code='123456', minutes=5, attempts=0):
    return OTPCode.objects.create(
        identifier=mobile,
        code=code,
        expires_at=timezone.now() + timedelta(minutes=minutes),
        attempts=attempts,
    )


class SignupTests(TestCase):
    """Test the OTP based signup flow"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_send_otp_requires_ten_digits(self):
        response = self.client.post('/api/auth/signup/send-otp/', {'mobile': '12345'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_send_otp_existing_mobile_conflicts(self):
        user = TestDataFactory.create_user()
        response = self.client.post('/api/auth/signup/send-otp/', {'mobile': user.mobile}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_send_otp_creates_code(self):
        response = self.client.post('/api/auth/signup/send-otp/', {'mobile': '9876543210'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['expiry'], 5)
        self.assertTrue(OTPCode.objects.filter(identifier='9876543210').exists())

    def test_verify_creates_user_and_wallet(self):
        _otp('9876543210')
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210',
            'code': '123456',
            'password': 'secret123',
            'age': 30,
            'name': 'Asha',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn('token', response.data)
        user = User.objects.get(mobile='9876543210')
        self.assertTrue(user.is_verified)
        self.assertTrue(user.check_password('secret123'))
        self.assertTrue(user.referral_code.startswith('ASH'))
        self.assertTrue(Wallet.objects.filter(user=user).exists())
        self.assertFalse(OTPCode.objects.filter(identifier='9876543210').exists())

    def test_verify_taken_email_conflicts(self):
        """Test an email claimed after send-otp is rejected without creating anyone"""
        TestDataFactory.create_user(email='asha@example.com')
        _otp('9876543210')
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210', 'code': '123456', 'password': 'secret123', 'age': 30,
            'email': 'asha@example.com',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(User.objects.filter(mobile='9876543210').exists())
        self.assertTrue(OTPCode.objects.filter(identifier='9876543210').exists())

    def test_verify_taken_mobile_conflicts(self):
        TestDataFactory.create_user(mobile='9876543210')
        _otp('9876543210')
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210', 'code': '123456', 'password': 'secret123', 'age': 30,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(User.objects.filter(mobile='9876543210').count(), 1)

    def test_verify_integrity_error_conflicts(self):
        """Test a uniqueness race at insert time returns 409"""
        _otp('9876543210')
        with patch.object(User.objects, 'create_user', side_effect=IntegrityError('UNIQUE constraint failed')):
            response = self.client.post('/api/auth/signup/verify/', {
                'mobile': '9876543210', 'code': '123456', 'password': 'secret123', 'age': 30,
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(Wallet.objects.exists())

    def test_verify_with_wrong_code(self):
        _otp('9876543210')
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210', 'code': '000000', 'password': 'secret123', 'age': 30,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid or Expired OTP')

    def test_verify_with_expired_code(self):
        _otp('9876543210', minutes=-1)
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210', 'code': '123456', 'password': 'secret123', 'age': 30,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_verify_missing_fields(self):
        response = self.client.post('/api/auth/signup/verify/', {'mobile': '9876543210'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_verify_with_unknown_referral_code(self):
        _otp('9876543210')
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210', 'code': '123456', 'password': 'secret123', 'age': 30,
            'referralCode': 'NOPE1234',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_REFERRAL')
        self.assertFalse(User.objects.filter(mobile='9876543210').exists())

    def test_verify_with_referral_awards_signup_bonus(self):
        referrer = TestDataFactory.create_user(name='Ravi')
        _otp('9876543210')
        response = self.client.post('/api/auth/signup/verify/', {
            'mobile': '9876543210', 'code': '123456', 'password': 'secret123', 'age': 30,
            'referralCode': referrer.referral_code.lower(),
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        user = User.objects.get(mobile='9876543210')
        self.assertEqual(user.referred_by, referrer)
        self.assertEqual(user.wallet.balance, Decimal('50.00'))
        self.assertTrue(ReferralReward.objects.filter(referee=user, reward_type='REFEREE_SIGNUP').exists())


class LoginTests(TestCase):
    """Test password and OTP login"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user(password='secret123')

    def test_password_login(self):
        response = self.client.post('/api/auth/login/password/', {
            'mobile': self.user.mobile, 'password': 'secret123'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user']['role'], 'USER')
        self.assertIn('token', response.data)

    def test_password_login_bad_credentials(self):
        response = self.client.post('/api/auth/login/password/', {
            'mobile': self.user.mobile, 'password': 'wrong'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_blocked_user_cannot_login(self):
        self.user.status = 'BLOCKED'
        self.user.save()
        response = self.client.post('/api/auth/login/password/', {
            'mobile': self.user.mobile, 'password': 'secret123'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_send_otp_unknown_user(self):
        response = self.client.post('/api/auth/login/send-otp/', {'mobile': '9000000001'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_verify_otp_marks_user_verified(self):
        self.user.is_verified = False
        self.user.save()
        _otp(self.user.mobile)

        response = self.client.post('/api/auth/login/verify-otp/', {
            'mobile': self.user.mobile, 'code': '123456'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.is_verified)
        self.assertFalse(OTPCode.objects.filter(identifier=self.user.mobile).exists())

    def test_me(self):
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['mobile'], self.user.mobile)


class ForgotPasswordTests(TestCase):
    """Test the password reset flow"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user(password='oldpass1')

    def test_send_otp_cooldown(self):
        first = self.client.post('/api/auth/forgot-password/send-otp/', {'mobile': self.user.mobile}, format='json')
        self.assertEqual(first.status_code, status.HTTP_200_OK)

        second = self.client.post('/api/auth/forgot-password/send-otp/', {'mobile': self.user.mobile}, format='json')
        self.assertEqual(second.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertIn('retryAfter', second.data)

    def test_weak_password_rejected(self):
        _otp(self.user.mobile)
        response = self.client.post('/api/auth/forgot-password/verify-reset/', {
            'mobile': self.user.mobile, 'code': '123456', 'newPassword': 'abcdef'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_wrong_code_counts_attempts(self):
        _otp(self.user.mobile)
        response = self.client.post('/api/auth/forgot-password/verify-reset/', {
            'mobile': self.user.mobile, 'code': '000000', 'newPassword': 'newpass1'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['remainingAttempts'], 4)
        self.assertEqual(OTPCode.objects.get(identifier=self.user.mobile).attempts, 1)

    def test_too_many_attempts(self):
        _otp(self.user.mobile, attempts=5)
        response = self.client.post('/api/auth/forgot-password/verify-reset/', {
            'mobile': self.user.mobile, 'code': '123456', 'newPassword': 'newpass1'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertFalse(OTPCode.objects.filter(identifier=self.user.mobile).exists())

    def test_reset_success(self):
        _otp(self.user.mobile)
        response = self.client.post('/api/auth/forgot-password/verify-reset/', {
            'mobile': self.user.mobile, 'code': '123456', 'newPassword': 'newpass1'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('newpass1'))


class CallbackRequestTests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_create_callback_request(self):
        response = self.client.post('/api/callback/request/', {'name': 'Asha', 'mobile': '9876543210'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        callback = CallbackRequest.objects.get()
        self.assertEqual(callback.city, 'Unspecified')
        self.assertEqual(callback.status, 'PENDING')

    def test_name_and_mobile_required(self):
        response = self.client.post('/api/callback/request/', {'name': 'Asha'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class AdminPermissionTests(TestCase):
    """Test SUPER_ADMIN gating"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.admin = TestDataFactory.create_super_admin()

    def test_regular_user_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/admin/health/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_manager_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_manager())
        response = self.client.get('/api/admin/health/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_blocked_admin_forbidden(self):
        self.admin.status = 'BLOCKED'
        self.admin.save()
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/admin/health/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(str(response.data['detail']), 'Forbidden: Account is blocked')

    def test_unauthenticated(self):
        response = self.client.get('/api/admin/health/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_health(self):
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/admin/health/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['ok'])


class AdminUserTests(TestCase):
    """Test the admin user console"""

    def setUp(self):
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.user = TestDataFactory.create_user(name='Asha')
        TestDataFactory.create_wallet(self.user, Decimal('75.00'))

    def test_list_excludes_super_admins(self):
        response = self.client.get('/api/admin/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [row['id'] for row in response.data['users']]
        self.assertIn(self.user.id, ids)
        self.assertNotIn(self.admin.id, ids)
        self.assertEqual(response.data['pagination']['total'], 1)

    def test_list_search_and_wallet_balance(self):
        TestDataFactory.create_user(name='Someone Else')
        response = self.client.get('/api/admin/users/?search=asha')
        self.assertEqual(len(response.data['users']), 1)
        self.assertEqual(response.data['users'][0]['walletBalance'], 75.0)

    def test_detail(self):
        TestDataFactory.create_booking(self.user)
        response = self.client.get(f'/api/admin/users/{self.user.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['wallet']['balance'], 75.0)
        self.assertEqual(len(response.data['orders']), 1)
        self.assertEqual(len(response.data['walletLedger']), 1)

    def test_detail_not_found(self):
        response = self.client.get('/api/admin/users/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_block_user_writes_audit_log(self):
        response = self.client.put(f'/api/admin/users/{self.user.id}/status/', {
            'status': 'BLOCKED', 'reason': 'fraud'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.status, 'BLOCKED')
        log = AuditLog.objects.get(action='USER_BLOCKED')
        self.assertTrue(log.is_destructive)
        self.assertEqual(log.target_id, str(self.user.id))

    def test_invalid_status(self):
        response = self.client.put(f'/api/admin/users/{self.user.id}/status/', {'status': 'GONE'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_promote_to_manager(self):
        response = self.client.put(f'/api/admin/users/{self.user.id}/role/', {'role': 'MANAGER'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, 'MANAGER')
        self.assertTrue(AuditLog.objects.filter(action='USER_PROMOTED_MANAGER').exists())

    def test_cannot_change_own_role(self):
        response = self.client.put(f'/api/admin/users/{self.admin.id}/role/', {'role': 'USER'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cannot_modify_super_admin(self):
        other_admin = TestDataFactory.create_super_admin()
        response = self.client.put(f'/api/admin/users/{other_admin.id}/role/', {'role': 'USER'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class AdminConfigAndAuditTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_update_config_upserts_and_audits(self):
        response = self.client.put('/api/admin/config/REFERRAL_BONUS_REFEREE/', {'value': 75}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(SystemConfig.objects.get(key='REFERRAL_BONUS_REFEREE').value, '75')

        self.client.put('/api/admin/config/REFERRAL_BONUS_REFEREE/', {'value': 80}, format='json')
        log = AuditLog.objects.filter(action='CONFIG_UPDATED').order_by('-id').first()
        self.assertEqual(log.old_value, {'value': '75'})
        self.assertEqual(log.new_value['value'], '80')

    def test_update_config_requires_value(self):
        response = self.client.put('/api/admin/config/X/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_config_list(self):
        SystemConfig.objects.create(key='B', value='2')
        SystemConfig.objects.create(key='A', value='1')
        response = self.client.get('/api/admin/config/')
        self.assertEqual([c['key'] for c in response.data['configs']], ['A', 'B'])

    def test_audit_log_filters(self):
        create_audit_log(user=self.admin, action='CREATE', entity='PromoCode', target_id=1)
        create_audit_log(user=self.admin, action='USER_BLOCKED', entity='User', target_id=2)

        response = self.client.get('/api/admin/audit-logs/?action=CREATE')
        self.assertEqual(response.data['pagination']['total'], 1)

        response = self.client.get('/api/admin/audit-logs/?action=All&search=user')
        self.assertEqual(len(response.data['logs']), 1)
        self.assertEqual(response.data['logs'][0]['entity'], 'User')


class UtilsTests(TestCase):
    """Test core helpers"""

    def setUp(self):
        cache.clear()
        self.factory = RequestFactory()

    def test_get_client_ip_prefers_forwarded_for(self):
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='10.0.0.1, 10.0.0.2', REMOTE_ADDR='127.0.0.1')
        self.assertEqual(get_client_ip(request), '10.0.0.1')

    def test_get_client_ip_remote_addr(self):
        request = self.factory.get('/', REMOTE_ADDR='127.0.0.1')
        self.assertEqual(get_client_ip(request), '127.0.0.1')

    def test_get_config_value(self):
        SystemConfig.objects.create(key='NUM', value='12.5')
        SystemConfig.objects.create(key='TEXT', value='abc')
        self.assertEqual(get_config_value('NUM', 1), 12.5)
        self.assertEqual(get_config_value('TEXT', 1), 1)
        self.assertEqual(get_config_value('MISSING', 7), 7)

    def test_audit_log_skipped_without_target(self):
        self.assertIsNone(create_audit_log(action='CREATE', entity='X', target_id=None))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_throttled_response_shape(self):
        view = Mock()
        view.get_throttles.return_value = [BookingStatusThrottle()]
        response = api_exception_handler(Throttled(wait=12.3), {'view': view})
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data, {'error': 'Too many status check requests', 'retryAfter': 13})
        self.assertEqual(response['Retry-After'], '13')

    def test_throttled_default_message(self):
        view = Mock()
        view.get_throttles.return_value = [PaymentInitiateThrottle()]
        response = api_exception_handler(Throttled(wait=None), {'view': view})
        self.assertEqual(response.data['error'], DEFAULT_THROTTLE_MESSAGE)
        self.assertEqual(response.data['retryAfter'], 1)

    def test_other_errors_pass_through(self):
        response = api_exception_handler(NotFound(), {'view': None})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertIn('detail', response.data)


class SeedCommandTests(TestCase):

    def test_seed_is_idempotent(self):
        user = User.objects.create_user(username='9000000001', mobile='9000000001', password='x')

        call_command('seed_docnow', stdout=StringIO())
        call_command('seed_docnow', stdout=StringIO())

        self.assertEqual(User.objects.filter(role='SUPER_ADMIN').count(), 1)
        admin = User.objects.get(role='SUPER_ADMIN')
        self.assertEqual(admin.mobile, '9999999999')
        self.assertEqual(admin.email, 'admin@docnow.in')
        self.assertEqual(SystemConfig.objects.get(key='REFERRAL_BONUS_REFEREE').value, '50')
        self.assertEqual(SystemConfig.objects.get(key='REFERRAL_BONUS_REFERRER').value, '100')

        user.refresh_from_db()
        self.assertIsNotNone(user.referral_code)
        self.assertTrue(Wallet.objects.filter(user=user).exists())
