"""
Checkout and booking fulfilment.

Flow: initiate_checkout() reserves promo and wallet funds and creates the
booking plus a gateway order; verify_payment() or the webhook authorizes it;
fulfil_booking() creates the partner booking. A payment that went through is
never dropped: if the partner call fails the booking is parked in
PARTNER_FAILED with a PartnerRetry row for the reconciler.
"""
import logging
from datetime import timedelta
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from backend.parties.models import Patient, Wallet, WalletLedgerEntry
from backend.parties.referrals import try_award_first_order_bonus
from backend.parties.wallets import InsufficientBalance, credit_wallet, debit_wallet
from backend.partners.healthians import HealthiansError, get_client, normalize_gender
from backend.pricing.models import PromoRedemption
from backend.pricing.promos import PromoError, calculate_discount, get_promo, lock_promo, release_promo, validate_promo
from .models import Booking, BookingItem, CartItem, PartnerRetry, WebhookEvent
from .payments import create_order, fetch_order, verify_payment_signature
from .state_machine import can_transition, transition

logger = logging.getLogger(__name__)

DEFAULT_LAT = '28.6139'
DEFAULT_LONG = '77.2090'
FIRST_RETRY_DELAY = 60  # seconds
AMOUNT_TOLERANCE = Decimal('1')
PARTNER_CLAIM_TTL = timedelta(minutes=5)
CLAIMABLE_STATUSES = ('AUTHORIZED', 'PAID', 'PARTNER_FAILED')


class CheckoutError(Exception):
    """Checkout cannot proceed; message is safe to show the customer"""

    def __init__(self, message, status_code=400, code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def clear_cart(user):
    CartItem.objects.filter(cart__user=user).delete()


def cart_total(items):
    return sum((item.price for item in items), Decimal('0.00'))


def get_zone_id(lat, long, pincode, client=None):
    client = client or get_client()
    data = client.check_serviceability(lat, long, pincode)
    return ((data or {}).get('data') or {}).get('zone_id')


def build_packages(items):
    """Group test codes by patient: [{'deal_id': [...]}, ...]"""
    groups = {}
    for item in items:
        groups.setdefault(item.patient_id or 'self', []).append(item.test_code)
    return [{'deal_id': codes} for codes in groups.values()]


def _resolve_self_patient(user):
    patient = Patient.objects.filter(user=user, relation__in=['Self', 'self']).first()
    if patient:
        return patient
    patient = Patient.objects.create(
        user=user,
        name=user.name or 'Self',
        relation='Self',
        age=user.age or 25,
        gender=user.gender or 'Male',
    )
    logger.info(f"Auto-created self patient {patient.id} for user {user.id}")
    return patient


def missing_profile_fields(user):
    return {
        'name': not user.name,
        'gender': not user.gender,
        'age': not user.age,
    }


def initiate_checkout(user, slot_id, address, promo_code=None, use_wallet=False):
    """
    Create an INITIATED booking from the user's cart.

    Returns (booking, gateway_order). gateway_order is None when promo and
    wallet cover the whole amount; the booking is then already PAID.
    Raises CheckoutError for promo/wallet problems and PaymentGatewayError when
    the order cannot be created. Either way nothing is written.
    """
    items = list(CartItem.objects.filter(cart__user=user).select_related('patient').order_by('created_at'))
    if not items:
        raise CheckoutError('Cart is empty')

    with transaction.atomic():
        total = cart_total(items)
        discount = Decimal('0.00')
        promo = None

        if promo_code:
            promo = get_promo(promo_code)
            try:
                validate_promo(promo, user, total)
                lock_promo(promo)
            except PromoError as e:
                raise CheckoutError(e.message)
            discount = calculate_discount(promo, total)
            logger.info(f"Promo {promo.code} locked for user {user.id}")

        wallet = Wallet.objects.filter(user=user).first()
        wallet_amount = Decimal('0.00')
        if use_wallet and wallet:
            wallet_amount = max(Decimal('0.00'), min(wallet.balance, total - discount))

        self_patient = _resolve_self_patient(user) if any(item.patient_id is None for item in items) else None
        final_amount = max(Decimal('0.00'), total - discount - wallet_amount)

        booking = Booking.objects.create(
            user=user,
            address=address,
            status='PENDING',
            payment_status='INITIATED',
            slot_date=timezone.localdate().isoformat(),
            slot_time=str(slot_id),
            total_amount=total,
            discount_amount=discount,
            wallet_amount=wallet_amount,
            final_amount=final_amount,
            promo_code=promo.code if promo else None,
        )
        BookingItem.objects.bulk_create([
            BookingItem(
                booking=booking,
                patient=item.patient or self_patient,
                test_code=item.test_code,
                test_name=item.test_name,
                price=item.price,
            )
            for item in items
        ])

        if promo:
            PromoRedemption.objects.create(user=user, promo_code=promo, booking=booking)

        if wallet_amount > 0:
            try:
                debit_wallet(
                    wallet, wallet_amount,
                    description=f'Used for booking #{str(booking.pk)[:8]}',
                    reference_type='ORDER',
                    reference_id=str(booking.pk),
                )
            except InsufficientBalance:
                raise CheckoutError('Insufficient wallet balance during processing')

        gateway_order = None
        if final_amount > 0:
            gateway_order = create_order(final_amount, receipt=booking.pk, notes={'bookingId': str(booking.pk)})
            booking.razorpay_order_id = gateway_order['id']
            booking.save(update_fields=['razorpay_order_id', 'updated_at'])
        else:
            transition(booking, 'PAID', razorpay_payment_id=f'ZERO_{booking.pk}', paid_at=timezone.now())

    logger.info(
        f"Checkout initiated: booking {booking.pk} user {user.id} total {total} "
        f"discount {discount} wallet {wallet_amount} final {final_amount}"
    )
    return booking, gateway_order


def refund_wallet_amount(booking):
    """Credit the wallet funds a booking used back to the user, at most once"""
    if booking.wallet_amount <= 0:
        return False

    already_refunded = WalletLedgerEntry.objects.filter(
        reference_type='REFUND', reference_id=str(booking.pk)
    ).exists()
    if already_refunded:
        logger.info(f"Wallet refund for booking {booking.pk} already issued")
        return False

    wallet = Wallet.objects.filter(user_id=booking.user_id).first()
    if wallet is None:
        return False
    credit_wallet(
        wallet, booking.wallet_amount,
        description=f'Refund for booking #{str(booking.pk)[:8]}',
        reference_type='REFUND',
        reference_id=str(booking.pk),
    )
    return True


def rollback_booking(booking):
    """Give back the promo slot and refund wallet funds held by a booking that never got paid"""
    with transaction.atomic():
        release_promo(booking)
        refund_wallet_amount(booking)
    logger.info(f"Rolled back booking {booking.pk}")


def fail_booking(booking):
    """INITIATED -> FAILED, releasing promo and wallet funds if the move won"""
    if transition(booking, 'FAILED'):
        rollback_booking(booking)
        return True
    return False


def build_partner_payload(booking, zone_id):
    user = booking.user
    address = booking.address

    groups = {}
    for item in booking.items.select_related('patient').all():
        patient = item.patient
        key = patient.id if patient else 'self'
        if key not in groups:
            if patient:
                customer = {
                    'customer_id': str(patient.id),
                    'customer_name': patient.name,
                    'relation': patient.relation,
                    'age': patient.age,
                    'gender': normalize_gender(patient.gender),
                }
            else:
                customer = {
                    'customer_id': str(user.id),
                    'customer_name': user.name,
                    'relation': 'self',
                    'age': user.age,
                    'gender': normalize_gender(user.gender),
                }
            customer.update({'contact_number': user.mobile, 'email': user.email or ''})
            groups[key] = {'customer': customer, 'codes': []}
        groups[key]['codes'].append(item.test_code)

    return {
        'customer': [group['customer'] for group in groups.values()],
        'slot': {'slot_id': str(booking.slot_time)},
        'package': [{'deal_id': group['codes']} for group in groups.values()],
        'customer_calling_number': user.mobile,
        'billing_cust_name': user.name,
        'gender': normalize_gender(user.gender),
        'mobile': user.mobile,
        'billing_gender': normalize_gender(user.gender),
        'billing_mobile': user.mobile,
        'email': user.email or '',
        'billing_email': user.email or '',
        'state': 26,
        'cityId': 23,
        'sub_locality': address.line1,
        'latitude': str(address.lat) if address.lat is not None else DEFAULT_LAT,
        'longitude': str(address.long) if address.long is not None else DEFAULT_LONG,
        'address': address.line1,
        'zipcode': address.pincode,
        'landmark': '',
        'payment_option': 'prepaid',
        'discounted_price': float(booking.total_amount),
        'zone_id': zone_id,
        'client_id': '',
        'is_ppmc_booking': 0,
        'vendor_billing_user_id': str(user.id),
    }


def create_partner_booking(booking, client=None):
    """Book the tests with the partner; returns the partner booking id"""
    client = client or get_client()
    address = booking.address
    if address is None:
        raise HealthiansError('Missing address for partner booking')

    zone_id = get_zone_id(
        address.lat if address.lat is not None else DEFAULT_LAT,
        address.long if address.long is not None else DEFAULT_LONG,
        address.pincode,
        client=client,
    )
    if not zone_id:
        raise HealthiansError('Could not determine zone for address')

    response = client.create_booking(build_partner_payload(booking, zone_id))
    if not response.get('status'):
        raise HealthiansError(response.get('message') or 'Healthians booking failed', payload=response)

    partner_booking_id = response.get('booking_id') or (response.get('data') or {}).get('booking_id')
    if not partner_booking_id:
        raise HealthiansError('Healthians booking successful but booking_id missing in response', payload=response)

    logger.info(f"Partner booking {partner_booking_id} created for booking {booking.pk}")
    return str(partner_booking_id)


def enqueue_partner_retry(booking, error_message, delay=FIRST_RETRY_DELAY):
    retry, created = PartnerRetry.objects.get_or_create(
        booking=booking,
        defaults={
            'next_retry_at': timezone.now() + timedelta(seconds=delay),
            'last_error': error_message,
        }
    )
    if created:
        logger.info(f"Booking {booking.pk} queued for partner retry")
    return retry


def claim_partner_booking(booking):
    """
    Take the right to create the partner booking for a paid booking.

    A conditional UPDATE, so only one of several concurrent callers (verify,
    webhook follow-up, reconciler) wins. A claim older than PARTNER_CLAIM_TTL
    belongs to a worker that died and can be taken over.
    """
    now = timezone.now()
    claimed = Booking.objects.filter(
        Q(partner_claimed_at__isnull=True) | Q(partner_claimed_at__lt=now - PARTNER_CLAIM_TTL),
        pk=booking.pk,
        payment_status__in=CLAIMABLE_STATUSES,
        partner_booking_id__isnull=True,
    ).update(partner_claimed_at=now)
    if not claimed:
        logger.info(f"Partner booking for {booking.pk} is already claimed or created")
        return False

    booking.partner_claimed_at = now
    return True


def release_partner_claim(booking):
    Booking.objects.filter(pk=booking.pk).update(partner_claimed_at=None)
    booking.partner_claimed_at = None


def confirm_booking(booking, partner_booking_id):
    """Mark the booking CONFIRMED, clear the cart and drop any pending retry"""
    with transaction.atomic():
        moved = transition(
            booking, 'CONFIRMED',
            partner_booking_id=partner_booking_id,
            status='Order Booked',
            partner_error=None,
        )
        if moved:
            clear_cart(booking.user)
            PartnerRetry.objects.filter(booking=booking).delete()

    if moved:
        try_award_first_order_bonus(booking.user, booking)
    return moved


def mark_partner_failed(booking, error_message):
    """Park a paid booking whose partner booking failed and queue it for retry"""
    with transaction.atomic():
        if can_transition(booking.payment_status, 'PARTNER_FAILED'):
            transition(booking, 'PARTNER_FAILED', partner_error=error_message)
        release_partner_claim(booking)
        enqueue_partner_retry(booking, error_message)


def fulfil_booking(booking):
    """
    Create the partner booking for a paid booking.
    Returns True when confirmed. False when parked for retry or when another
    worker holds the claim; the partner is not called in that case.
    """
    if not claim_partner_booking(booking):
        return False

    try:
        partner_booking_id = create_partner_booking(booking)
    except HealthiansError as e:
        logger.error(f"Partner booking failed for {booking.pk}: {e.message}")
        mark_partner_failed(booking, e.message)
        return False
    except Exception as e:
        logger.error(f"Unexpected error creating partner booking for {booking.pk}: {str(e)}")
        mark_partner_failed(booking, str(e) or 'Partner API failed')
        return False

    if not confirm_booking(booking, partner_booking_id):
        logger.error(f"Booking {booking.pk} changed state before partner booking {partner_booking_id} was recorded")
        return False
    return True


def verify_payment(booking, payment_id, order_id, signature):
    """
    Verify a checkout callback and fulfil the booking.

    Returns 'already_confirmed', 'confirmed' or 'pending'. Raises CheckoutError
    when the payment must be rejected; the booking is then FAILED and rolled back.
    """
    if booking.payment_status == 'CONFIRMED':
        return 'already_confirmed'

    if booking.payment_status == 'PARTNER_FAILED':
        return 'pending'

    if booking.payment_status != 'AUTHORIZED':
        if booking.razorpay_payment_id:
            raise CheckoutError('Payment already processed for this booking')

        if booking.payment_status != 'INITIATED':
            raise CheckoutError(f'Booking cannot be verified in status {booking.payment_status}')

        if not verify_payment_signature(order_id, payment_id, signature):
            logger.error(f"Signature mismatch for booking {booking.pk}")
            fail_booking(booking)
            raise CheckoutError('Payment verification failed')

        order = fetch_order(order_id)
        paid_paise = order.get('amount_paid') or order.get('amount') or 0
        paid_amount = Decimal(str(paid_paise)) / Decimal('100')
        if abs(paid_amount - booking.final_amount) > AMOUNT_TOLERANCE:
            logger.error(f"Amount mismatch for booking {booking.pk}: paid {paid_amount}, expected {booking.final_amount}")
            fail_booking(booking)
            raise CheckoutError('Amount mismatch')

        notes_booking_id = (order.get('notes') or {}).get('bookingId')
        if notes_booking_id and notes_booking_id != str(booking.pk):
            logger.warning(f"Order {order_id} notes reference booking {notes_booking_id}, expected {booking.pk}")

        try:
            with transaction.atomic():
                moved = transition(booking, 'AUTHORIZED', razorpay_payment_id=payment_id, paid_at=timezone.now())
        except IntegrityError:
            raise CheckoutError('Payment already processed for this booking')

        if not moved:
            # The webhook got there first
            booking.refresh_from_db()
            if booking.payment_status == 'CONFIRMED':
                return 'already_confirmed'
            if booking.payment_status != 'AUTHORIZED':
                raise CheckoutError('Payment verification failed')
        else:
            logger.info(f"Payment authorized for booking {booking.pk}")
    else:
        logger.info(f"Booking {booking.pk} already authorized by webhook, creating partner booking")

    if fulfil_booking(booking):
        return 'confirmed'

    booking.refresh_from_db(fields=['payment_status'])
    return 'already_confirmed' if booking.payment_status == 'CONFIRMED' else 'pending'


def process_webhook(event_id, payload):
    """Apply a verified gateway webhook once; returns 'duplicate' or 'ok'"""
    try:
        with transaction.atomic():
            WebhookEvent.objects.create(event_id=event_id)
    except IntegrityError:
        logger.info(f"Duplicate webhook event ignored: {event_id}")
        return 'duplicate'

    event = payload.get('event')
    entity = ((payload.get('payload') or {}).get('payment') or {}).get('entity') or {}
    order_id = entity.get('order_id')
    logger.info(f"Webhook {event} ({event_id}) for order {order_id}")

    if not order_id:
        return 'ok'

    booking = Booking.objects.filter(razorpay_order_id=order_id).first()
    if booking is None or booking.payment_status != 'INITIATED':
        return 'ok'

    if event == 'payment.captured':
        transition(booking, 'AUTHORIZED', razorpay_payment_id=entity.get('id'), paid_at=timezone.now())
    elif event == 'payment.failed':
        fail_booking(booking)
    return 'ok'
