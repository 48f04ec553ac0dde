"""
Test suite for Parties module
Tests: Profile, addresses, family members, wallets and ledger, referral rewards, admin wallet tools
"""
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase
from rest_framework import status

from backend.core.models import AuditLog, SystemConfig
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.parties.models import Address, Patient, Wallet, WalletLedgerEntry, ReferralReward
from backend.parties.referrals import (
    award_signup_bonus, generate_referral_code, try_award_first_order_bonus
)
from backend.parties.wallets import (
    InsufficientBalance, credit_wallet, debit_wallet, get_or_create_wallet, wallet_balance_from_ledger
)


class WalletServiceTests(TestCase):
    """Test balance movements and their ledger rows"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.wallet = get_or_create_wallet(self.user)

    def test_credit_and_debit_are_signed(self):
        credit_wallet(self.wallet, Decimal('150.00'), reference_type='REFERRAL', reference_id='r1')
        entry = debit_wallet(self.wallet, Decimal('40.00'), reference_type='ORDER', reference_id='b1')

        self.assertEqual(entry.amount, Decimal('-40.00'))
        self.assertEqual(entry.balance_after, Decimal('110.00'))
        self.assertEqual(self.wallet.balance, Decimal('110.00'))
        self.assertEqual(wallet_balance_from_ledger(self.wallet), Decimal('110.00'))

    def test_debit_beyond_balance(self):
        credit_wallet(self.wallet, Decimal('20.00'))
        with self.assertRaises(InsufficientBalance):
            debit_wallet(self.wallet, Decimal('20.01'))

        self.wallet.refresh_from_db()
        self.assertEqual(self.wallet.balance, Decimal('20.00'))
        self.assertEqual(WalletLedgerEntry.objects.filter(type='DEBIT').count(), 0)

    def test_empty_ledger_balance(self):
        self.assertEqual(wallet_balance_from_ledger(self.wallet), Decimal('0.00'))


class ReferralServiceTests(TestCase):
    """Test referral codes and bonus awards"""

    def setUp(self):
        self.referrer = TestDataFactory.create_user(name='Ravi Kumar')
        self.referee = TestDataFactory.create_user(name='Neha', referred_by=self.referrer)

    def test_generate_referral_code(self):
        code = generate_referral_code('Ravi Kumar')
        self.assertTrue(code.startswith('RAV'))
        self.assertEqual(len(code), 8)
        self.assertTrue(generate_referral_code(None).startswith('DOC'))
        self.assertTrue(generate_referral_code('42').startswith('DOC'))

    def test_signup_bonus_once(self):
        self.assertEqual(award_signup_bonus(self.referrer, self.referee), Decimal('50'))
        self.assertIsNone(award_signup_bonus(self.referrer, self.referee))

        wallet = Wallet.objects.get(user=self.referee)
        self.assertEqual(wallet.balance, Decimal('50.00'))
        self.assertEqual(WalletLedgerEntry.objects.filter(wallet=wallet, reference_type='REFERRAL').count(), 1)

    def test_configured_signup_bonus(self):
        SystemConfig.objects.create(key='REFERRAL_BONUS_REFEREE', value='75')
        award_signup_bonus(self.referrer, self.referee)
        self.assertEqual(Wallet.objects.get(user=self.referee).balance, Decimal('75.00'))

    def test_first_order_bonus_once(self):
        first = TestDataFactory.create_booking(self.referee)
        second = TestDataFactory.create_booking(self.referee)

        self.assertEqual(try_award_first_order_bonus(self.referee, first), Decimal('100'))
        self.assertIsNone(try_award_first_order_bonus(self.referee, second))

        reward = ReferralReward.objects.get(reward_type='REFERRER_ORDER')
        self.assertEqual(reward.trigger_entity_id, str(first.pk))
        self.assertEqual(reward.status, 'PROCESSED')
        self.assertEqual(Wallet.objects.get(user=self.referrer).balance, Decimal('100.00'))

    def test_no_referrer_no_bonus(self):
        booking = TestDataFactory.create_booking(self.referrer)
        self.assertIsNone(try_award_first_order_bonus(self.referrer, booking))
        self.assertFalse(ReferralReward.objects.exists())

    def test_zero_bonus_disabled(self):
        SystemConfig.objects.create(key='REFERRAL_BONUS_REFERRER', value='0')
        booking = TestDataFactory.create_booking(self.referee)
        self.assertIsNone(try_award_first_order_bonus(self.referee, booking))


class ProfileTests(TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user(name='Asha', email='asha@example.com')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_get_profile(self):
        response = self.client.get('/api/profile/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['mobile'], self.user.mobile)
        self.assertIn('wallet', response.data)

    def test_update_profile(self):
        response = self.client.put('/api/profile/', {'gender': 'Female', 'age': 34}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Profile updated successfully')
        self.user.refresh_from_db()
        self.assertEqual((self.user.gender, self.user.age), ('Female', 34))

    def test_update_requires_a_field(self):
        response = self.client.put('/api/profile/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_email_taken(self):
        TestDataFactory.create_user(email='taken@example.com')
        response = self.client.put('/api/profile/', {'email': 'TAKEN@example.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_wallet_without_wallet(self):
        response = self.client.get('/api/profile/wallet/')
        self.assertEqual(response.data, {'balance': 0, 'transactions': []})

    def test_wallet(self):
        TestDataFactory.create_wallet(self.user, Decimal('120.00'))
        response = self.client.get('/api/profile/wallet/')
        self.assertEqual(response.data['balance'], 120.0)
        self.assertEqual(len(response.data['transactions']), 1)

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/profile/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class AddressTests(TestCase):
    """Test address book endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_list_ordered_by_city(self):
        TestDataFactory.create_address(self.user, city='Pune', pincode='411001')
        TestDataFactory.create_address(self.user, city='Delhi')
        TestDataFactory.create_address(TestDataFactory.create_user(), city='Agra', pincode='282001')

        response = self.client.get('/api/profile/addresses/')
        self.assertEqual([a['city'] for a in response.data], ['Delhi', 'Pune'])

    @patch('backend.parties.views.get_geodata_from_pincode')
    def test_create_with_coordinates(self, mock_geo):
        response = self.client.post('/api/profile/addresses/', {
            'line1': '4 Park Street', 'city': 'Kolkata', 'pincode': '700016', 'lat': 22.55, 'long': 88.35,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['address']['lat'], 22.55)
        mock_geo.assert_not_called()

    @patch('backend.parties.views.get_geodata_from_pincode',
           return_value={'lat': 28.63, 'long': 77.21, 'city': 'Connaught Place'})
    def test_create_geocodes_pincode(self, mock_geo):
        response = self.client.post('/api/profile/addresses/', {
            'line1': '1 Janpath', 'city': 'Delhi', 'pincode': 110001,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        mock_geo.assert_called_once_with('110001')
        address = Address.objects.get(user=self.user)
        self.assertEqual((address.lat, address.long), (28.63, 77.21))

    @patch('backend.parties.views.get_geodata_from_pincode', return_value=None)
    def test_create_without_geodata(self, mock_geo):
        response = self.client.post('/api/profile/addresses/', {
            'line1': '1 Janpath', 'city': 'Delhi', 'pincode': '110001',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(Address.objects.get(user=self.user).lat)

    def test_create_invalid(self):
        response = self.client.post('/api/profile/addresses/', {'line1': 'x', 'city': 'Delhi'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post('/api/profile/addresses/', {
            'line1': 'x', 'city': 'Delhi', 'pincode': '1100',
        }, format='json')
        self.assertEqual(response.data['error'], 'Invalid pincode format')

    @patch('backend.parties.views.get_geodata_from_pincode', return_value={'lat': 19.07, 'long': 72.87, 'city': 'Mumbai'})
    def test_update_pincode_regeocodes(self, mock_geo):
        address = TestDataFactory.create_address(self.user)
        response = self.client.put(f'/api/profile/addresses/{address.id}/', {
            'city': 'Mumbai', 'pincode': '400001',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        address.refresh_from_db()
        self.assertEqual((address.city, address.lat), ('Mumbai', 19.07))

    @patch('backend.parties.views.get_geodata_from_pincode')
    def test_update_same_pincode_keeps_coordinates(self, mock_geo):
        address = TestDataFactory.create_address(self.user)
        self.client.put(f'/api/profile/addresses/{address.id}/', {'pincode': '110001'}, format='json')
        mock_geo.assert_not_called()

    def test_other_users_address(self):
        address = TestDataFactory.create_address(TestDataFactory.create_user())
        response = self.client.delete(f'/api/profile/addresses/{address.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(Address.objects.filter(pk=address.id).exists())

    def test_delete(self):
        address = TestDataFactory.create_address(self.user)
        response = self.client.delete(f'/api/profile/addresses/{address.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Address.objects.filter(pk=address.id).exists())

        response = self.client.delete(f'/api/profile/addresses/{address.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class PatientTests(TestCase):
    """Test family member endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_and_list(self):
        response = self.client.post('/api/profile/patients/', {
            'name': 'Zoya', 'relation': 'Child', 'age': 8, 'gender': 'Female',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        TestDataFactory.create_patient(self.user, name='Arjun')

        response = self.client.get('/api/profile/patients/')
        self.assertEqual([p['name'] for p in response.data], ['Arjun', 'Zoya'])

    def test_create_missing_fields(self):
        response = self.client.post('/api/profile/patients/', {'name': 'Zoya', 'age': 8}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'All fields (name, relation, age, gender) are required')

    def test_create_invalid_age(self):
        response = self.client.post('/api/profile/patients/', {
            'name': 'Old', 'relation': 'Parent', 'age': 200, 'gender': 'Male',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('age', response.data)

    def test_update(self):
        patient = TestDataFactory.create_patient(self.user, name='Dev', relation='Sibling')
        response = self.client.put(f'/api/profile/patients/{patient.id}/', {'age': 41}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        patient.refresh_from_db()
        self.assertEqual(patient.age, 41)

    def test_delete_blocked_by_bookings(self):
        patient = TestDataFactory.create_patient(self.user)
        TestDataFactory.create_booking(self.user, patient=patient)
        response = self.client.delete(f'/api/profile/patients/{patient.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(Patient.objects.filter(pk=patient.id).exists())

    def test_delete(self):
        patient = TestDataFactory.create_patient(self.user)
        response = self.client.delete(f'/api/profile/patients/{patient.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_other_users_patient(self):
        patient = TestDataFactory.create_patient(TestDataFactory.create_user())
        response = self.client.put(f'/api/profile/patients/{patient.id}/', {'age': 41}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class AdminWalletTests(TestCase):
    """Test super-admin wallet adjustments and the ledger view"""

    def setUp(self):
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.user = TestDataFactory.create_user(name='Kabir')

    def _adjust(self, **data):
        payload = {'userId': self.user.id, 'type': 'CREDIT', 'amount': 100, 'reason': 'Goodwill credit'}
        payload.update(data)
        return self.client.post('/api/admin/wallets/adjust/', payload, format='json')

    def test_credit(self):
        response = self._adjust()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['newBalance'], 100.0)

        entry = WalletLedgerEntry.objects.get(wallet__user=self.user)
        self.assertEqual(entry.reference_type, 'ADMIN_ADJUSTMENT')
        self.assertTrue(entry.reference_id.startswith('ADMIN-'))
        self.assertEqual(entry.created_by, self.admin)
        self.assertEqual(Wallet.objects.get(user=self.user).balance, Decimal('100.00'))

        log = AuditLog.objects.get(action='WALLET_ADJUSTMENT')
        self.assertFalse(log.is_destructive)

    def test_debit(self):
        TestDataFactory.create_wallet(self.user, Decimal('80.00'))
        response = self._adjust(type='DEBIT', amount='30.50')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['newBalance'], 49.5)
        self.assertEqual(Wallet.objects.get(user=self.user).balance, Decimal('49.50'))
        self.assertTrue(AuditLog.objects.get(action='WALLET_ADJUSTMENT').is_destructive)

    def test_debit_beyond_balance(self):
        TestDataFactory.create_wallet(self.user, Decimal('20.00'))
        response = self._adjust(type='DEBIT', amount=50)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Insufficient wallet balance')
        self.assertEqual(WalletLedgerEntry.objects.filter(type='DEBIT').count(), 0)
        self.assertFalse(AuditLog.objects.filter(action='WALLET_ADJUSTMENT').exists())

    def test_validation(self):
        self.assertEqual(self._adjust(reason='').data['error'], 'Missing required fields')
        self.assertEqual(self._adjust(type='BONUS').data['error'], 'Invalid transaction type')
        self.assertEqual(self._adjust(amount=-5).data['error'], 'Invalid amount')
        self.assertEqual(self._adjust(amount='lots').data['error'], 'Invalid amount')

        response = self._adjust(userId=999999)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_manager_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_manager())
        response = self._adjust()
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_ledger_filters(self):
        TestDataFactory.create_wallet(self.user, Decimal('80.00'))
        other = TestDataFactory.create_user(name='Farah')
        TestDataFactory.create_wallet(other, Decimal('60.00'))
        self._adjust(type='DEBIT', amount=10)

        response = self.client.get('/api/admin/wallets/ledger/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 3)

        response = self.client.get('/api/admin/wallets/ledger/?type=DEBIT')
        self.assertEqual(len(response.data['ledger']), 1)
        self.assertEqual(response.data['ledger'][0]['user']['name'], 'Kabir')

        response = self.client.get('/api/admin/wallets/ledger/?search=farah')
        self.assertEqual(response.data['pagination']['total'], 1)


class AdminReferralStatsTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_stats(self):
        referrer = TestDataFactory.create_user(name='Top Referrer')
        verified = TestDataFactory.create_user(name='Friend One', referred_by=referrer)
        TestDataFactory.create_user(name='Friend Two', referred_by=referrer, is_verified=False)
        award_signup_bonus(referrer, verified)
        try_award_first_order_bonus(verified, TestDataFactory.create_booking(verified))

        response = self.client.get('/api/admin/referrals/stats/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stats'], {
            'totalReferrals': 2,
            'totalRewardsDistributed': 150.0,
            'pendingRewards': 0,
        })

        leader = response.data['leaderboard'][0]
        self.assertEqual(leader['name'], 'Top Referrer')
        self.assertEqual(leader['totalReferrals'], 2)
        self.assertEqual(leader['totalEarnings'], 100.0)

        statuses = {row['refereeName']: row['status'] for row in response.data['recentActivity']}
        self.assertEqual(statuses, {'Friend One': 'COMPLETED', 'Friend Two': 'PENDING_VERIFICATION'})

    def test_regular_user_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/admin/referrals/stats/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class SyncWalletBalancesTests(TestCase):

    def setUp(self):
        self.wallet = TestDataFactory.create_wallet(TestDataFactory.create_user(), Decimal('100.00'))
        Wallet.objects.filter(pk=self.wallet.pk).update(balance=Decimal('70.00'))

    def test_dry_run(self):
        out = StringIO()
        call_command('sync_wallet_balances', '--dry-run', stdout=out)
        self.assertIn('1 wallets would be updated', out.getvalue())
        self.wallet.refresh_from_db()
        self.assertEqual(self.wallet.balance, Decimal('70.00'))

    def test_sync(self):
        out = StringIO()
        call_command('sync_wallet_balances', stdout=out)
        self.assertIn('1 wallets synced', out.getvalue())
        self.wallet.refresh_from_db()
        self.assertEqual(self.wallet.balance, Decimal('100.00'))
