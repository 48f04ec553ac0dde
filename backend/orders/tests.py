"""
Test suite for Orders module
Tests: Cart, payment state machine, checkout, payment verification, webhooks,
booking management and the reconciler
"""
import hashlib
import hmac
import json
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.parties.models import Wallet, WalletLedgerEntry
from backend.partners.healthians import HealthiansError, STATUS_CODE_TO_LABEL
from backend.pricing.models import PromoCode, PromoRedemption
from backend.orders.models import Booking, CartItem, PartnerRetry, WebhookEvent
from backend.orders.payments import (
    PaymentGatewayError, create_order, to_paise, verify_payment_signature
)
from backend.orders.reconciler import (
    expire_abandoned_bookings, process_stuck_authorized, retry_partner_bookings, send_dead_letter_alert
)
from backend.orders.services import refund_wallet_amount, verify_payment
from backend.orders.state_machine import InvalidTransition, can_transition, transition


SERVICEABLE = {'status': True, 'data': {'zone_id': '12'}}
PARTNER_BOOKED = {'status': True, 'booking_id': 'HB100'}


def _partner(booking_response=None):
    partner = MagicMock()
    partner.check_serviceability.return_value = SERVICEABLE
    partner.create_booking.return_value = booking_response or PARTNER_BOOKED
    return partner


def _complete_profile(user):
    user.gender = 'Male'
    user.age = 30
    user.save()
    return user


class StateMachineTests(TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user()

    def test_allowed_transitions(self):
        self.assertTrue(can_transition('INITIATED', 'AUTHORIZED'))
        self.assertTrue(can_transition('INITIATED', 'PAID'))
        self.assertTrue(can_transition('PARTNER_FAILED', 'REFUNDED'))
        self.assertFalse(can_transition('CONFIRMED', 'REFUNDED'))
        self.assertFalse(can_transition('FAILED', 'AUTHORIZED'))
        self.assertFalse(can_transition('UNKNOWN', 'FAILED'))

    def test_invalid_transition_raises(self):
        booking = TestDataFactory.create_booking(self.user, payment_status='CONFIRMED')
        with self.assertRaises(InvalidTransition):
            transition(booking, 'FAILED')

    def test_transition_writes_fields(self):
        booking = TestDataFactory.create_booking(self.user)
        self.assertTrue(transition(booking, 'AUTHORIZED', razorpay_payment_id='pay_1'))
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'AUTHORIZED')
        self.assertEqual(booking.razorpay_payment_id, 'pay_1')

    def test_stale_status_does_not_move(self):
        booking = TestDataFactory.create_booking(self.user)
        Booking.objects.filter(pk=booking.pk).update(payment_status='FAILED')

        self.assertFalse(transition(booking, 'AUTHORIZED'))
        self.assertEqual(booking.payment_status, 'INITIATED')
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'FAILED')


class PaymentGatewayTests(TestCase):
    """Test the Razorpay helpers"""

    def test_to_paise(self):
        self.assertEqual(to_paise(Decimal('499.99')), 49999)
        self.assertEqual(to_paise(0), 0)

    @override_settings(RAZORPAY_KEY_SECRET='secret')
    def test_payment_signature(self):
        signature = hmac.new(b'secret', b'order_1|pay_1', hashlib.sha256).hexdigest()
        self.assertTrue(verify_payment_signature('order_1', 'pay_1', signature))
        self.assertFalse(verify_payment_signature('order_1', 'pay_2', signature))
        self.assertFalse(verify_payment_signature('order_1', 'pay_1', ''))

    @override_settings(RAZORPAY_KEY_SECRET='')
    def test_payment_signature_without_secret(self):
        self.assertFalse(verify_payment_signature('order_1', 'pay_1', 'anything'))

    @override_settings(RAZORPAY_KEY_ID='rzp_test', RAZORPAY_KEY_SECRET='secret')
    @patch('backend.orders.payments.requests.request')
    def test_create_order(self, mock_request):
        mock_request.return_value.status_code = 200
        mock_request.return_value.json.return_value = {'id': 'order_1', 'currency': 'INR'}

        order = create_order(Decimal('450.50'), receipt='b1', notes={'bookingId': 'b1'})
        self.assertEqual(order['id'], 'order_1')
        args, kwargs = mock_request.call_args
        self.assertEqual(args[0], 'POST')
        self.assertTrue(args[1].endswith('/orders'))
        self.assertEqual(kwargs['json']['amount'], 45050)
        self.assertEqual(kwargs['auth'], ('rzp_test', 'secret'))

    @override_settings(RAZORPAY_KEY_ID='rzp_test', RAZORPAY_KEY_SECRET='secret')
    @patch('backend.orders.payments.requests.request')
    def test_create_order_error(self, mock_request):
        mock_request.return_value.status_code = 400
        mock_request.return_value.json.return_value = {'error': {'description': 'Amount too small'}}

        with self.assertRaises(PaymentGatewayError) as ctx:
            create_order(Decimal('0.50'), receipt='b1')
        self.assertEqual(ctx.exception.message, 'Amount too small')
        self.assertEqual(ctx.exception.status_code, 400)

    @override_settings(RAZORPAY_KEY_ID='', RAZORPAY_KEY_SECRET='')
    def test_create_order_not_configured(self):
        with self.assertRaises(PaymentGatewayError):
            create_order(Decimal('100'), receipt='b1')


class CartTests(TestCase):
    """Test cart endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_get_creates_cart(self):
        response = self.client.get('/api/cart/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['items'], [])

    def test_add_item(self):
        patient = TestDataFactory.create_patient(self.user, name='Asha', relation='Parent', gender='Female')
        response = self.client.post('/api/cart/items/', {
            'testCode': 'HT101', 'testName': 'Complete Blood Count', 'price': 350, 'mrp': 500,
            'patientId': patient.id,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        item = CartItem.objects.get(cart__user=self.user)
        self.assertEqual(item.price, Decimal('350'))
        self.assertEqual(item.patient, patient)

    def test_add_duplicate(self):
        TestDataFactory.create_cart_item(self.user, test_code='HT101')
        response = self.client.post('/api/cart/items/', {
            'testCode': 'HT101', 'testName': 'Complete Blood Count', 'price': 350,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Item already in cart')

    def test_add_missing_fields(self):
        response = self.client.post('/api/cart/items/', {'testCode': 'HT101'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_add_with_foreign_patient(self):
        other_patient = TestDataFactory.create_patient(TestDataFactory.create_user())
        response = self.client.post('/api/cart/items/', {
            'testCode': 'HT101', 'testName': 'CBC', 'price': 350, 'patientId': other_patient.id,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_reassign_patient(self):
        item = TestDataFactory.create_cart_item(self.user)
        patient = TestDataFactory.create_patient(self.user, name='Ravi', relation='Parent')
        response = self.client.put(f'/api/cart/items/{item.id}/', {'patientId': patient.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        item.refresh_from_db()
        self.assertEqual(item.patient, patient)

        # No patient means the account holder
        self.client.put(f'/api/cart/items/{item.id}/', {'patientId': None}, format='json')
        item.refresh_from_db()
        self.assertIsNone(item.patient)

    def test_other_users_item_forbidden(self):
        item = TestDataFactory.create_cart_item(TestDataFactory.create_user())
        response = self.client.delete(f'/api/cart/items/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(CartItem.objects.filter(pk=item.id).exists())

    def test_missing_item(self):
        response = self.client.delete('/api/cart/items/99999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_remove_and_clear(self):
        first = TestDataFactory.create_cart_item(self.user)
        TestDataFactory.create_cart_item(self.user)

        self.client.delete(f'/api/cart/items/{first.id}/')
        self.assertEqual(CartItem.objects.filter(cart__user=self.user).count(), 1)

        response = self.client.delete('/api/cart/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(CartItem.objects.filter(cart__user=self.user).exists())


@override_settings(RAZORPAY_KEY_ID='rzp_test', RAZORPAY_KEY_SECRET='secret')
class SlotTests(TestCase):
    """Test slot lookup and freezing"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.partner = _partner()
        self.partner.get_slots_by_location.return_value = {'status': True, 'data': [{'slot_id': 'S1'}]}
        patcher = patch('backend.orders.views.get_client', return_value=self.partner)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _slots(self, **params):
        query = {'lat': '28.61', 'long': '77.20', 'zipcode': '110001'}
        query.update(params)
        return self.client.get('/api/slots/', query)

    def test_requires_location(self):
        response = self.client.get('/api/slots/', {'lat': '28.61', 'zipcode': '110001'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.partner.check_serviceability.assert_not_called()

    def test_rejects_dates_outside_window(self):
        TestDataFactory.create_cart_item(self.user)
        today = timezone.localdate()
        for slot_date in (today - timedelta(days=1), today + timedelta(days=7)):
            response = self._slots(date=slot_date.isoformat())
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self._slots(date=(today + timedelta(days=6)).isoformat())
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_rejects_malformed_date(self):
        TestDataFactory.create_cart_item(self.user)
        for raw in ('20-01-2026', '2026-13-45'):
            response = self._slots(date=raw)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(response.data['error'], 'Invalid date format, expected YYYY-MM-DD')

    def test_empty_cart(self):
        response = self._slots()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Cart is empty')

    def test_location_not_serviceable(self):
        TestDataFactory.create_cart_item(self.user)
        self.partner.check_serviceability.return_value = {'status': False, 'data': {}}
        response = self._slots()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['data'], {'status': False, 'data': {}})
        self.partner.get_slots_by_location.assert_not_called()

    def test_packages_grouped_per_patient(self):
        mother = TestDataFactory.create_patient(self.user, name='Meera', relation='Parent')
        TestDataFactory.create_cart_item(self.user, test_code='HT1', price=Decimal('300.00'), patient=mother)
        TestDataFactory.create_cart_item(self.user, test_code='HT2', price=Decimal('200.00'), patient=mother)
        TestDataFactory.create_cart_item(self.user, test_code='HT3', price=Decimal('450.00'))

        response = self._slots()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'status': True, 'data': [{'slot_id': 'S1'}]})

        args = self.partner.get_slots_by_location.call_args.args
        self.assertEqual(args[:5], ('28.61', '77.20', '110001', '12', timezone.localdate().isoformat()))
        self.assertEqual(args[5], 950.0)
        self.assertEqual(sorted(sorted(group['deal_id']) for group in args[6]), [['HT1', 'HT2'], ['HT3']])

    def test_partner_error(self):
        TestDataFactory.create_cart_item(self.user)
        self.partner.get_slots_by_location.side_effect = HealthiansError('down')
        response = self._slots()
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    def test_freeze(self):
        self.partner.freeze_slot.return_value = {'status': True, 'message': 'Frozen'}
        response = self.client.post('/api/slots/freeze/', {'slot_id': 'S1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Frozen')
        self.partner.freeze_slot.assert_called_once_with('S1', self.user.id)

    def test_freeze_requires_slot(self):
        response = self.client.post('/api/slots/freeze/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.partner.freeze_slot.assert_not_called()

    def test_freeze_partner_error(self):
        self.partner.freeze_slot.side_effect = HealthiansError('Slot taken')
        response = self.client.post('/api/slots/freeze/', {'slot_id': 'S1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'Failed to freeze slot')


@override_settings(RAZORPAY_KEY_ID='rzp_test', RAZORPAY_KEY_SECRET='secret')
class PaymentInitiateTests(TestCase):
    """Test checkout initiation"""

    def setUp(self):
        cache.clear()
        self.user = _complete_profile(TestDataFactory.create_user())
        self.address = TestDataFactory.create_address(self.user)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        TestDataFactory.create_cart_item(self.user, test_code='HT101', price=Decimal('500.00'))

    def _initiate(self, **extra):
        data = {'slot_id': 'S100', 'addressId': self.address.id}
        data.update(extra)
        return self.client.post('/api/payments/initiate/', data, format='json')

    @patch('backend.orders.services.create_order', return_value={'id': 'order_1', 'currency': 'INR'})
    def test_initiate(self, mock_order):
        response = self._initiate()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['razorpayOrderId'], 'order_1')
        self.assertEqual(response.data['amount'], 50000)
        self.assertEqual(response.data['keyId'], 'rzp_test')

        booking = Booking.objects.get(pk=response.data['bookingId'])
        self.assertEqual(booking.payment_status, 'INITIATED')
        self.assertEqual(booking.razorpay_order_id, 'order_1')
        self.assertEqual(booking.slot_time, 'S100')
        # Cart item without a patient is booked for the auto-created self patient
        item = booking.items.get()
        self.assertEqual(item.patient.relation, 'Self')
        # Cart is kept until payment is confirmed
        self.assertTrue(CartItem.objects.filter(cart__user=self.user).exists())

    @patch('backend.orders.services.create_order', return_value={'id': 'order_1', 'currency': 'INR'})
    def test_promo_and_wallet(self, mock_order):
        promo = TestDataFactory.create_promo(code='SAVE10', discount_value=Decimal('10'))
        wallet = TestDataFactory.create_wallet(self.user, Decimal('50.00'))

        response = self._initiate(promoCode='save10', useWallet=True)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['amount'], 40000)

        booking = Booking.objects.get(pk=response.data['bookingId'])
        self.assertEqual(booking.discount_amount, Decimal('50.00'))
        self.assertEqual(booking.wallet_amount, Decimal('50.00'))
        self.assertEqual(booking.final_amount, Decimal('400.00'))
        self.assertEqual(booking.promo_code, 'SAVE10')

        promo.refresh_from_db()
        wallet.refresh_from_db()
        self.assertEqual(promo.redeemed_count, 1)
        self.assertTrue(PromoRedemption.objects.filter(booking=booking).exists())
        self.assertEqual(wallet.balance, Decimal('0.00'))
        debit = WalletLedgerEntry.objects.get(wallet=wallet, type='DEBIT')
        self.assertEqual(debit.amount, Decimal('-50.00'))
        self.assertEqual(debit.reference_id, str(booking.pk))

    @patch('backend.orders.services.get_client')
    def test_zero_amount_confirms_immediately(self, mock_get_client):
        mock_get_client.return_value = _partner()
        TestDataFactory.create_wallet(self.user, Decimal('600.00'))

        response = self._initiate(useWallet=True)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'confirmed')
        self.assertEqual(response.data['amount'], 0)

        booking = Booking.objects.get(pk=response.data['bookingId'])
        self.assertEqual(booking.payment_status, 'CONFIRMED')
        self.assertEqual(booking.partner_booking_id, 'HB100')
        self.assertEqual(booking.razorpay_payment_id, f'ZERO_{booking.pk}')
        self.assertFalse(CartItem.objects.filter(cart__user=self.user).exists())

    @patch('backend.orders.services.create_order', side_effect=PaymentGatewayError('Gateway down'))
    def test_gateway_error_writes_nothing(self, mock_order):
        promo = TestDataFactory.create_promo(code='SAVE10')
        wallet = TestDataFactory.create_wallet(self.user, Decimal('50.00'))

        response = self._initiate(promoCode='SAVE10', useWallet=True)
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['error'], 'Payment gateway error')
        self.assertEqual(response.data['details'], 'Gateway down')

        self.assertFalse(Booking.objects.exists())
        promo.refresh_from_db()
        wallet.refresh_from_db()
        self.assertEqual(promo.redeemed_count, 0)
        self.assertEqual(wallet.balance, Decimal('50.00'))

    def test_invalid_promo(self):
        response = self._initiate(promoCode='NOPE')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid or inactive promo code')
        self.assertFalse(Booking.objects.exists())

    def test_empty_cart(self):
        CartItem.objects.all().delete()
        response = self._initiate()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Cart is empty')

    def test_profile_incomplete(self):
        self.user.gender = None
        self.user.save()
        response = self._initiate()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'PROFILE_INCOMPLETE')
        self.assertTrue(response.data['missingFields']['gender'])
        self.assertFalse(response.data['missingFields']['name'])

    def test_missing_params(self):
        response = self.client.post('/api/payments/initiate/', {'slot_id': 'S100'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_foreign_address(self):
        other_address = TestDataFactory.create_address(TestDataFactory.create_user())
        response = self._initiate(addressId=other_address.id)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class PaymentVerifyTests(TestCase):
    """Test the checkout callback"""

    def setUp(self):
        cache.clear()
        self.referrer = TestDataFactory.create_user(name='Referrer')
        self.user = _complete_profile(TestDataFactory.create_user(referred_by=self.referrer))
        self.address = TestDataFactory.create_address(self.user)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.booking = TestDataFactory.create_booking(
            self.user, address=self.address, razorpay_order_id='order_1'
        )
        TestDataFactory.create_cart_item(self.user)

        self.partner = _partner()
        patchers = [
            patch('backend.orders.services.get_client', return_value=self.partner),
            patch('backend.orders.services.verify_payment_signature', return_value=True),
            patch('backend.orders.services.fetch_order', return_value={
                'id': 'order_1', 'amount_paid': 50000, 'notes': {'bookingId': str(self.booking.pk)}
            }),
        ]
        self.mock_client, self.mock_signature, self.mock_fetch = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)

    def _verify(self, booking=None):
        return self.client.post('/api/payments/verify/', {
            'bookingId': str((booking or self.booking).pk),
            'razorpay_payment_id': 'pay_1',
            'razorpay_order_id': 'order_1',
            'razorpay_signature': 'sig',
        }, format='json')

    def test_confirms_booking(self):
        response = self._verify()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'status': 'confirmed', 'bookingId': str(self.booking.pk)})

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'CONFIRMED')
        self.assertEqual(self.booking.razorpay_payment_id, 'pay_1')
        self.assertEqual(self.booking.partner_booking_id, 'HB100')
        self.assertEqual(self.booking.status, 'Order Booked')
        self.assertIsNotNone(self.booking.paid_at)
        self.assertFalse(CartItem.objects.filter(cart__user=self.user).exists())

        payload = self.partner.create_booking.call_args.args[0]
        self.assertEqual(payload['zone_id'], '12')
        self.assertEqual(payload['package'], [{'deal_id': ['HT001']}])
        self.assertEqual(payload['slot'], {'slot_id': '08:00 - 09:00'})

    def test_first_order_rewards_referrer(self):
        self._verify()
        self.assertEqual(Wallet.objects.get(user=self.referrer).balance, Decimal('100.00'))

    def test_second_verify_is_idempotent(self):
        self._verify()
        response = self._verify()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Payment already verified')
        self.assertEqual(self.partner.create_booking.call_count, 1)

    def test_bad_signature_fails_and_rolls_back(self):
        wallet = TestDataFactory.create_wallet(self.user)
        promo = TestDataFactory.create_promo(code='SAVE10', redeemed_count=1)
        booking = TestDataFactory.create_booking(
            self.user, address=self.address, wallet_amount=Decimal('100.00'),
            promo_code='SAVE10', razorpay_order_id='order_2'
        )
        PromoRedemption.objects.create(user=self.user, promo_code=promo, booking=booking)
        self.mock_signature.return_value = False

        response = self._verify(booking)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Payment verification failed')

        booking.refresh_from_db()
        wallet.refresh_from_db()
        promo.refresh_from_db()
        self.assertEqual(booking.payment_status, 'FAILED')
        self.assertEqual(wallet.balance, Decimal('100.00'))
        self.assertTrue(WalletLedgerEntry.objects.filter(reference_type='REFUND', reference_id=str(booking.pk)).exists())
        self.assertEqual(promo.redeemed_count, 0)
        self.assertFalse(PromoRedemption.objects.filter(booking=booking).exists())

    def test_amount_mismatch(self):
        self.mock_fetch.return_value = {'id': 'order_1', 'amount_paid': 10000}
        response = self._verify()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Amount mismatch')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'FAILED')

    def test_partner_failure_keeps_payment(self):
        self.partner.create_booking.return_value = {'status': False, 'message': 'Slot full'}
        response = self._verify()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'payment_received_booking_pending')

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'PARTNER_FAILED')
        self.assertEqual(self.booking.partner_error, 'Slot full')
        self.assertIsNone(self.booking.partner_claimed_at)
        retry = PartnerRetry.objects.get(booking=self.booking)
        self.assertEqual(retry.attempts, 0)
        # Cart survives until the booking is confirmed
        self.assertTrue(CartItem.objects.filter(cart__user=self.user).exists())

        # Verifying again while parked reports pending without calling the partner
        response = self._verify()
        self.assertEqual(response.data['status'], 'payment_received_booking_pending')
        self.assertEqual(self.partner.create_booking.call_count, 1)

    def test_webhook_authorized_booking_is_fulfilled(self):
        Booking.objects.filter(pk=self.booking.pk).update(payment_status='AUTHORIZED', razorpay_payment_id='pay_1')
        self.mock_signature.return_value = False

        response = self._verify()
        self.assertEqual(response.data['status'], 'confirmed')
        self.mock_signature.assert_not_called()

    def test_reentrant_verify_books_partner_once(self):
        """Test a second verify arriving mid partner call does not book again"""
        Booking.objects.filter(pk=self.booking.pk).update(payment_status='AUTHORIZED', razorpay_payment_id='pay_1')
        nested_outcomes = []

        def book_while_another_verify_runs(payload):
            booking = Booking.objects.get(pk=self.booking.pk)
            nested_outcomes.append(verify_payment(booking, 'pay_1', 'order_1', 'sig'))
            return PARTNER_BOOKED

        self.partner.create_booking.side_effect = book_while_another_verify_runs
        response = self._verify()

        self.assertEqual(response.data['status'], 'confirmed')
        self.assertEqual(nested_outcomes, ['pending'])
        self.assertEqual(self.partner.create_booking.call_count, 1)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'CONFIRMED')
        self.assertEqual(self.booking.partner_booking_id, 'HB100')

    def test_claimed_booking_reports_pending(self):
        Booking.objects.filter(pk=self.booking.pk).update(
            payment_status='AUTHORIZED', razorpay_payment_id='pay_1', partner_claimed_at=timezone.now()
        )
        response = self._verify()
        self.assertEqual(response.data['status'], 'payment_received_booking_pending')
        self.partner.create_booking.assert_not_called()

    def test_stale_claim_is_taken_over(self):
        Booking.objects.filter(pk=self.booking.pk).update(
            payment_status='AUTHORIZED', razorpay_payment_id='pay_1',
            partner_claimed_at=timezone.now() - timedelta(minutes=10)
        )
        response = self._verify()
        self.assertEqual(response.data['status'], 'confirmed')
        self.assertEqual(self.partner.create_booking.call_count, 1)

    def test_failed_booking_cannot_be_verified(self):
        Booking.objects.filter(pk=self.booking.pk).update(payment_status='EXPIRED')
        response = self._verify()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_users_booking(self):
        booking = TestDataFactory.create_booking(TestDataFactory.create_user())
        response = self._verify(booking)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_missing_params(self):
        response = self.client.post('/api/payments/verify/', {'bookingId': str(self.booking.pk)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


@override_settings(RAZORPAY_WEBHOOK_SECRET='whsec')
class PaymentWebhookTests(TestCase):
    """Test the gateway webhook"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user()
        self.booking = TestDataFactory.create_booking(self.user, razorpay_order_id='order_1')

    def _post(self, event, event_id='evt_1', signature=None):
        body = json.dumps({
            'event': event,
            'payload': {'payment': {'entity': {'id': 'pay_1', 'order_id': 'order_1'}}},
        })
        if signature is None:
            signature = hmac.new(b'whsec', body.encode('utf-8'), hashlib.sha256).hexdigest()
        headers = {'HTTP_X_RAZORPAY_EVENT_ID': event_id}
        if signature:
            headers['HTTP_X_RAZORPAY_SIGNATURE'] = signature
        return self.client.post('/api/payments/webhook/', body, content_type='application/json', **headers)

    def test_captured_authorizes(self):
        response = self._post('payment.captured')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'ok')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'AUTHORIZED')
        self.assertEqual(self.booking.razorpay_payment_id, 'pay_1')

    def test_failed_event(self):
        self._post('payment.failed')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'FAILED')

    def test_duplicate_event_ignored(self):
        self._post('payment.captured')
        response = self._post('payment.failed')
        self.assertEqual(response.data['status'], 'duplicate')
        self.assertEqual(WebhookEvent.objects.count(), 1)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'AUTHORIZED')

    def test_missing_signature(self):
        response = self._post('payment.captured', signature='')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_bad_signature(self):
        response = self._post('payment.captured', signature='0' * 64)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, 'INITIATED')

    def test_unknown_order_is_acknowledged(self):
        Booking.objects.filter(pk=self.booking.pk).update(razorpay_order_id='order_other')
        response = self._post('payment.captured')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(WebhookEvent.objects.filter(event_id='evt_1').exists())


class BookingManagementTests(TestCase):
    """Test booking tracking, cancellation, rescheduling and phlebo contact"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.address = TestDataFactory.create_address(self.user)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.booking = TestDataFactory.create_booking(
            self.user, address=self.address, payment_status='CONFIRMED', status='Order Booked',
            partner_booking_id='HB100'
        )

        self.partner = MagicMock()
        self.partner.get_booking_status.return_value = {
            'status': True,
            'data': {
                'booking_status': 'BS002',
                'customer': [
                    {'vendor_customer_id': 'C1', 'customer_status': 'BS002'},
                    {'vendor_customer_id': 'C2', 'customer_status': 'BS0018'},
                ],
            },
        }
        patcher = patch('backend.orders.views.get_client', return_value=self.partner)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _set_partner_status(self, code):
        self.partner.get_booking_status.return_value['data']['booking_status'] = code

    def test_list(self):
        response = self.client.get('/api/bookings/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['id'], str(self.booking.pk))
        self.assertEqual(response.data[0]['items'], ['Complete Blood Count'])

    def test_status_syncs_label(self):
        self._set_partner_status('BS005')
        response = self.client.get(f'/api/bookings/{self.booking.pk}/status/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn(str(self.user.id), response.data['patientDetails'])

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, STATUS_CODE_TO_LABEL['BS005'])

    def test_status_invalid_id(self):
        response = self.client.get('/api/bookings/not-a-uuid/status/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid Booking ID format')

    def test_status_rate_limited(self):
        for _ in range(10):
            self.client.get('/api/bookings/not-a-uuid/status/')
        response = self.client.get('/api/bookings/not-a-uuid/status/')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data['error'], 'Too many status check requests')
        self.assertIn('Retry-After', response)

    def test_cancel(self):
        self.partner.cancel_booking.return_value = {'status': True, 'message': 'Cancelled'}
        response = self.client.post(f'/api/bookings/{self.booking.pk}/cancel/',
                                    {'remarks': 'Travelling that day'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['successCount'], 1)
        # Already cancelled customers are skipped
        self.partner.cancel_booking.assert_called_once_with('HB100', self.user.id, 'C1', 'Travelling that day')

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'Cancelled')

    def test_cancel_short_remarks(self):
        response = self.client.post(f'/api/bookings/{self.booking.pk}/cancel/', {'remarks': 'no'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.partner.get_booking_status.assert_not_called()

    def test_cancel_not_allowed_after_collection(self):
        self._set_partner_status('BS006')
        response = self.client.post(f'/api/bookings/{self.booking.pk}/cancel/',
                                    {'remarks': 'Changed my mind'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('BS006', response.data['error'])
        self.partner.cancel_booking.assert_not_called()

    def test_cancel_rate_limited(self):
        url = f'/api/bookings/{self.booking.pk}/cancel/'
        for _ in range(3):
            self.client.post(url, {'remarks': 'x'}, format='json')
        response = self.client.post(url, {'remarks': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)

    def test_reschedule(self):
        self.partner.reschedule_booking.return_value = {'status': True, 'data': {'new_booking_id': 'HB200'}}
        response = self.client.post(f'/api/bookings/{self.booking.pk}/reschedule/', {
            'slot_id': 'S200', 'slotDate': '2026-01-20', 'slotTime': '10:00 - 11:00',
            'reschedule_reason': 'Out of town',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        payload = self.partner.reschedule_booking.call_args.args[0]
        self.assertEqual(payload['booking_id'], 'HB100')
        self.assertEqual(payload['customers'], [{'vendor_customer_id': 'C1'}, {'vendor_customer_id': 'C2'}])

        new_booking = Booking.objects.get(pk=response.data['new_booking_id'])
        self.assertEqual(new_booking.partner_booking_id, 'HB200')
        self.assertEqual(new_booking.slot_date, '2026-01-20')
        self.assertEqual(new_booking.payment_status, 'CONFIRMED')
        self.assertEqual(new_booking.items.count(), 1)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'Rescheduled')

    def test_reschedule_cancelled_booking(self):
        Booking.objects.filter(pk=self.booking.pk).update(status='Cancelled')
        response = self.client.post(f'/api/bookings/{self.booking.pk}/reschedule/', {
            'slot_id': 'S200', 'reschedule_reason': 'Out of town',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_reschedulable_slots_requires_address(self):
        response = self.client.get(f'/api/bookings/{self.booking.pk}/reschedulable-slots/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'ADDRESS_REQUIRED')
        self.assertEqual(len(response.data['addresses']), 1)

    def test_phlebo_contact_is_cached(self):
        self._set_partner_status('BS005')
        self.partner.get_phlebo_mask_number.return_value = {
            'status': True, 'data': {'masked_number': '08012345678', 'phlebo_name': 'Ravi'}
        }
        url = f'/api/bookings/{self.booking.pk}/phlebo-contact/'
        first = self.client.get(url)
        second = self.client.get(url)
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data, {'masked_number': '08012345678', 'phlebo_name': 'Ravi'})
        self.assertEqual(self.partner.get_phlebo_mask_number.call_count, 1)

        # Cached contact is never served to another user
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_phlebo_contact_before_assignment(self):
        response = self.client.get(f'/api/bookings/{self.booking.pk}/phlebo-contact/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['currentStatus'], 'BS002')


class AdminOrdersTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.user = TestDataFactory.create_user(name='Meera')
        self.booked = TestDataFactory.create_booking(
            self.user, patient=TestDataFactory.create_patient(self.user, name='Kavya'),
            status='Order Booked', partner_booking_id='HB555'
        )
        self.cancelled = TestDataFactory.create_booking(self.user, status='Cancelled')

    def test_list_and_filter(self):
        response = self.client.get('/api/admin/orders/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 2)

        response = self.client.get('/api/admin/orders/?status=Cancelled')
        self.assertEqual([o['id'] for o in response.data['orders']], [str(self.cancelled.pk)])

    def test_search(self):
        response = self.client.get('/api/admin/orders/?search=kavya')
        self.assertEqual([o['id'] for o in response.data['orders']], [str(self.booked.pk)])
        self.assertEqual(response.data['orders'][0]['patient']['name'], 'Kavya')

        response = self.client.get(f'/api/admin/orders/?search={self.cancelled.pk}')
        self.assertEqual([o['id'] for o in response.data['orders']], [str(self.cancelled.pk)])

    def test_regular_user_forbidden(self):
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/admin/orders/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class ReconcilerTests(TestCase):
    """Test the payment reconciliation jobs"""

    def setUp(self):
        self.user = _complete_profile(TestDataFactory.create_user())
        self.address = TestDataFactory.create_address(self.user)
        self.partner = _partner()
        patcher = patch('backend.orders.services.get_client', return_value=self.partner)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_expires_abandoned_checkout(self):
        wallet = TestDataFactory.create_wallet(self.user)
        booking = TestDataFactory.create_booking(self.user, address=self.address, wallet_amount=Decimal('40.00'))

        self.assertEqual(expire_abandoned_bookings(), 0)
        self.assertEqual(expire_abandoned_bookings(now=timezone.now() + timedelta(minutes=31)), 1)

        booking.refresh_from_db()
        wallet.refresh_from_db()
        self.assertEqual(booking.payment_status, 'EXPIRED')
        self.assertEqual(wallet.balance, Decimal('40.00'))

    def test_stuck_authorized_confirmed(self):
        booking = TestDataFactory.create_booking(self.user, address=self.address, payment_status='AUTHORIZED')
        later = timezone.now() + timedelta(minutes=10)

        self.assertEqual(process_stuck_authorized(later), (1, 0))
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'CONFIRMED')
        self.assertEqual(booking.partner_booking_id, 'HB100')

    def test_stuck_authorized_partner_failure(self):
        self.partner.create_booking.return_value = {'status': False, 'message': 'Zone closed'}
        booking = TestDataFactory.create_booking(self.user, address=self.address, payment_status='AUTHORIZED')

        self.assertEqual(process_stuck_authorized(timezone.now() + timedelta(minutes=10)), (0, 1))
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'PARTNER_FAILED')
        self.assertTrue(PartnerRetry.objects.filter(booking=booking).exists())

    def test_stuck_authorized_skips_claimed(self):
        booking = TestDataFactory.create_booking(self.user, address=self.address, payment_status='AUTHORIZED')
        Booking.objects.filter(pk=booking.pk).update(partner_claimed_at=timezone.now())

        self.assertEqual(process_stuck_authorized(timezone.now() + timedelta(minutes=10)), (0, 0))
        self.partner.create_booking.assert_not_called()
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'AUTHORIZED')

    def test_stuck_authorized_failure_releases_claim(self):
        self.partner.create_booking.return_value = {'status': False, 'message': 'Zone closed'}
        booking = TestDataFactory.create_booking(self.user, address=self.address, payment_status='AUTHORIZED')

        process_stuck_authorized(timezone.now() + timedelta(minutes=10))
        booking.refresh_from_db()
        self.assertIsNone(booking.partner_claimed_at)

    def _parked_booking(self, attempts=0):
        booking = TestDataFactory.create_booking(
            self.user, address=self.address, payment_status='PARTNER_FAILED', razorpay_payment_id='pay_9'
        )
        retry = PartnerRetry.objects.create(
            booking=booking, attempts=attempts, next_retry_at=timezone.now() - timedelta(seconds=1),
            last_error='Slot full'
        )
        return booking, retry

    def test_retry_backoff(self):
        self.partner.create_booking.return_value = {'status': False, 'message': 'Still down'}
        booking, retry = self._parked_booking(attempts=1)
        now = timezone.now()

        self.assertEqual(retry_partner_bookings(now), (0, 1, 0))
        retry.refresh_from_db()
        self.assertEqual(retry.attempts, 2)
        self.assertEqual(retry.last_error, 'Still down')
        self.assertEqual(retry.next_retry_at, now + timedelta(seconds=300))

    def test_retry_success(self):
        booking, retry = self._parked_booking()
        self.assertEqual(retry_partner_bookings(), (1, 0, 0))
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'CONFIRMED')
        self.assertFalse(PartnerRetry.objects.exists())

    def test_retry_skips_claimed_booking(self):
        booking, retry = self._parked_booking(attempts=1)
        Booking.objects.filter(pk=booking.pk).update(partner_claimed_at=timezone.now())

        self.assertEqual(retry_partner_bookings(), (0, 0, 0))
        self.partner.create_booking.assert_not_called()
        retry.refresh_from_db()
        self.assertEqual(retry.attempts, 1)

    def test_failed_retry_releases_claim(self):
        self.partner.create_booking.return_value = {'status': False, 'message': 'Still down'}
        booking, _ = self._parked_booking()

        retry_partner_bookings()
        booking.refresh_from_db()
        self.assertIsNone(booking.partner_claimed_at)

    @patch('backend.orders.reconciler.send_dead_letter_alert')
    def test_dead_letter(self, mock_alert):
        booking, retry = self._parked_booking(attempts=3)
        self.assertEqual(retry_partner_bookings(), (0, 0, 1))

        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'REFUNDED')
        self.assertFalse(PartnerRetry.objects.exists())
        mock_alert.assert_called_once_with(booking.pk, 3, 'Slot full')
        self.partner.create_booking.assert_not_called()

    @patch('backend.orders.reconciler.send_dead_letter_alert')
    def test_dead_letter_refunds_wallet_share(self, mock_alert):
        wallet = TestDataFactory.create_wallet(self.user)
        booking, _ = self._parked_booking(attempts=3)
        Booking.objects.filter(pk=booking.pk).update(wallet_amount=Decimal('60.00'))

        retry_partner_bookings()

        wallet.refresh_from_db()
        self.assertEqual(wallet.balance, Decimal('60.00'))
        entry = WalletLedgerEntry.objects.get(reference_type='REFUND', reference_id=str(booking.pk))
        self.assertEqual(entry.amount, Decimal('60.00'))

        # A second refund for the same booking is never written
        booking.refresh_from_db()
        self.assertFalse(refund_wallet_amount(booking))
        self.assertEqual(WalletLedgerEntry.objects.filter(reference_type='REFUND').count(), 1)

    @override_settings(SLACK_WEBHOOK_URL='')
    def test_alert_without_webhook(self):
        self.assertFalse(send_dead_letter_alert('b1', 3, 'boom'))

    @override_settings(SLACK_WEBHOOK_URL='https://hooks.slack.test/x')
    @patch('backend.orders.reconciler.requests.post')
    def test_alert_posts_to_slack(self, mock_post):
        self.assertTrue(send_dead_letter_alert('b1', 3, 'boom'))
        self.assertIn('b1', mock_post.call_args.kwargs['json']['text'])

    def test_command_dry_run(self):
        booking = TestDataFactory.create_booking(self.user, address=self.address)
        Booking.objects.filter(pk=booking.pk).update(created_at=timezone.now() - timedelta(hours=1))

        out = StringIO()
        call_command('reconcile_payments', '--dry-run', stdout=out)
        self.assertIn('DRY RUN MODE', out.getvalue())
        self.assertIn('Abandoned INITIATED bookings: 1', out.getvalue())
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'INITIATED')

        out = StringIO()
        call_command('reconcile_payments', '--step', 'expire', stdout=out)
        self.assertIn('Expired 1 abandoned bookings', out.getvalue())
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, 'EXPIRED')

    def test_promo_released_on_expiry(self):
        promo = TestDataFactory.create_promo(code='GONE', redeemed_count=1)
        booking = TestDataFactory.create_booking(self.user, address=self.address, promo_code='GONE')
        PromoRedemption.objects.create(user=self.user, promo_code=promo, booking=booking)

        expire_abandoned_bookings(now=timezone.now() + timedelta(hours=1))
        self.assertEqual(PromoCode.objects.get(pk=promo.pk).redeemed_count, 0)
