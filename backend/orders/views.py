import json
import logging
import uuid
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, authentication_classes, throttle_classes
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated
from django.core.cache import cache
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from backend.core.cache_utils import PHLEBO_CONTACT_CACHE_TTL, get_phlebo_cache_key
from backend.core.permissions import IsSuperAdmin
from backend.core.throttling import (
    BookingCancelThrottle, BookingRescheduleThrottle, BookingStatusThrottle, PaymentInitiateThrottle,
    PaymentVerifyThrottle
)
from backend.core.throttling import (
    BookingCancelThrottle, BookingRescheduleThrottle, BookingStatusThrottle, PaymentInitiateThrottle,
    PaymentVerifyThrottle
)
from backend.core.utils import parse_pagination, paginate_queryset
from backend.parties.models import Address, Patient
from backend.parties.serializers import AddressSerializer
from backend.partners.healthians import (
    HealthiansError, STATUS_CODE_TO_LABEL, get_client, retry_with_backoff
)
from .models import Booking, BookingItem, Cart, CartItem
from .payments import PaymentGatewayError, get_key_id, to_paise, verify_webhook_signature
from .serializers import CartItemSerializer, CartSerializer
from .services import (
    CheckoutError, DEFAULT_LAT, DEFAULT_LONG, build_packages, cart_total, clear_cart, fulfil_booking,
    get_zone_id, initiate_checkout, missing_profile_fields, process_webhook, verify_payment
)

logger = logging.getLogger(__name__)

SLOT_BOOKING_WINDOW_DAYS = 6
CANCELLABLE_PARTNER_STATUSES = ('BS002', 'BS005')
PHLEBO_VISIBLE_STATUS = 'BS005'
NON_RESCHEDULABLE_STATUSES = ['Cancelled', 'Sample Collected', 'Report Generated', 'Completed', 'Rescheduled']


def _parse_uuid(value):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _get_user_booking(user, booking_id):
    booking_uuid = _parse_uuid(booking_id)
    if booking_uuid is None:
        return None
    return Booking.objects.filter(pk=booking_uuid, user=user).select_related('user', 'address').first()


def _get_user_address(user, address_id):
    try:
        return Address.objects.filter(pk=int(address_id), user=user).first()
    except (TypeError, ValueError):
        return None


def _get_user_patient(user, patient_id):
    try:
        return Patient.objects.filter(pk=int(patient_id), user=user).first()
    except (TypeError, ValueError):
        return None


def _partner_customers(partner_booking_id):
    """Customers and current booking status code from the partner"""
    response = get_client().get_booking_status(partner_booking_id)
    data = (response or {}).get('data') or {}
    return data.get('customer') or [], data.get('booking_status'), response


# Cart
@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
def cart_detail(request):
    """Get the cart (created on first access) or clear it"""
    if request.method == 'DELETE':
        clear_cart(request.user)
        return Response({'message': 'Cart cleared'})

    cart, _ = Cart.objects.get_or_create(user=request.user)
    return Response(CartSerializer(cart).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cart_item_add(request):
    data = request.data
    test_code = data.get('testCode')
    test_name = data.get('testName')
    price = data.get('price')

    if not test_code or not test_name or price is None:
        return Response({'error': 'testCode, testName, and price are required'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        price = Decimal(str(price))
        mrp = Decimal(str(data['mrp'])) if data.get('mrp') else None
    except (InvalidOperation, ValueError):
        return Response({'error': 'price and mrp must be numbers'}, status=status.HTTP_400_BAD_REQUEST)

    patient = None
    if data.get('patientId'):
        patient = _get_user_patient(request.user, data.get('patientId'))
        if patient is None:
            return Response({'error': 'Patient not found'}, status=status.HTTP_404_NOT_FOUND)

    cart, _ = Cart.objects.get_or_create(user=request.user)
    if CartItem.objects.filter(cart=cart, test_code=test_code).exists():
        return Response({'error': 'Item already in cart'}, status=status.HTTP_409_CONFLICT)

    item = CartItem.objects.create(
        cart=cart,
        test_code=test_code,
        test_name=test_name,
        price=price,
        mrp=mrp,
        patient=patient,
    )
    return Response({'message': 'Item added to cart', 'item': CartItemSerializer(item).data},
                    status=status.HTTP_201_CREATED)


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def cart_item_detail(request, pk):
    """Reassign the patient on a cart item, or remove it"""
    item = CartItem.objects.select_related('cart').filter(pk=pk).first()
    if item is None:
        return Response({'error': 'Cart item not found'}, status=status.HTTP_404_NOT_FOUND)
    if item.cart.user_id != request.user.id:
        logger.warning(f"User {request.user.id} tried to modify cart item {pk} owned by {item.cart.user_id}")
        return Response({'error': 'Unauthorized'}, status=status.HTTP_403_FORBIDDEN)

    if request.method == 'DELETE':
        item.delete()
        return Response({'message': 'Item removed from cart'})

    patient_id = request.data.get('patientId')
    patient = None
    if patient_id:
        patient = _get_user_patient(request.user, patient_id)
        if patient is None:
            return Response({'error': 'Patient not found'}, status=status.HTTP_404_NOT_FOUND)

    item.patient = patient
    item.save(update_fields=['patient'])
    return Response({'message': 'Cart item updated', 'item': CartItemSerializer(item).data})


# Slots
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def slots(request):
    """Partner slots for the cart at a location and date"""
    lat = request.query_params.get('lat')
    long = request.query_params.get('long')
    zipcode = request.query_params.get('zipcode')
    if not lat or not long or not zipcode:
        return Response({'error': 'lat, long and zipcode are required'}, status=status.HTTP_400_BAD_REQUEST)

    today = timezone.localdate()
    raw_date = request.query_params.get('date')
    try:
        slot_date = parse_date(raw_date) if raw_date else today
    except ValueError:
        slot_date = None
    if slot_date is None:
        return Response({'error': 'Invalid date format, expected YYYY-MM-DD'}, status=status.HTTP_400_BAD_REQUEST)
    if slot_date < today or slot_date > today + timedelta(days=SLOT_BOOKING_WINDOW_DAYS):
        return Response({'error': f'Date must be within the next {SLOT_BOOKING_WINDOW_DAYS} days'},
                        status=status.HTTP_400_BAD_REQUEST)

    items = list(CartItem.objects.filter(cart__user=request.user))
    if not items:
        return Response({'error': 'Cart is empty'}, status=status.HTTP_400_BAD_REQUEST)

    client = get_client()
    try:
        serviceability = client.check_serviceability(lat, long, zipcode)
        zone_id = ((serviceability or {}).get('data') or {}).get('zone_id')
        if not zone_id:
            return Response({'error': 'Location not serviceable', 'data': serviceability},
                            status=status.HTTP_400_BAD_REQUEST)

        data = client.get_slots_by_location(
            lat, long, zipcode, zone_id, slot_date.isoformat(),
            float(cart_total(items)), build_packages(items)
        )
    except HealthiansError as e:
        logger.error(f"Slot lookup failed for {zipcode}: {e.message}")
        return Response({'error': 'Failed to fetch slots'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def slot_freeze(request):
    slot_id = request.data.get('slot_id')
    if not slot_id:
        return Response({'error': 'slot_id is required'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        data = get_client().freeze_slot(slot_id, request.user.id)
    except HealthiansError as e:
        logger.error(f"Freezing slot {slot_id} failed: {e.message}")
        return Response({'error': 'Failed to freeze slot'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(data)


# Payments
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PaymentInitiateThrottle])
def payment_initiate(request):
    """Create the booking, lock promo and wallet funds and open a gateway order"""
    user = request.user
    slot_id = request.data.get('slot_id')
    address_id = request.data.get('addressId')
    promo_code = request.data.get('promoCode')
    use_wallet = bool(request.data.get('useWallet'))

    if not slot_id or not address_id:
        return Response({'error': 'Missing slot_id or addressId'}, status=status.HTTP_400_BAD_REQUEST)

    address = _get_user_address(user, address_id)
    if address is None:
        return Response({'error': 'Address not found'}, status=status.HTTP_404_NOT_FOUND)

    if not CartItem.objects.filter(cart__user=user).exists():
        return Response({'error': 'Cart is empty'}, status=status.HTTP_400_BAD_REQUEST)

    missing = missing_profile_fields(user)
    if any(missing.values()):
        return Response({
            'error': 'Profile incomplete',
            'code': 'PROFILE_INCOMPLETE',
            'missingFields': missing,
        }, status=status.HTTP_400_BAD_REQUEST)

    try:
        booking, gateway_order = initiate_checkout(user, slot_id, address, promo_code, use_wallet)
    except CheckoutError as e:
        logger.warning(f"Checkout rejected for user {user.id}: {e.message}")
        return Response({'error': e.message}, status=e.status_code)
    except PaymentGatewayError as e:
        logger.error(f"Gateway order failed for user {user.id}: {e.message}")
        return Response({'error': 'Payment gateway error', 'details': e.message}, status=status.HTTP_502_BAD_GATEWAY)

    if gateway_order is None:
        logger.info(f"Zero amount booking {booking.pk}, confirming immediately")
        confirmed = fulfil_booking(booking)
        clear_cart(user)
        return Response({
            'bookingId': str(booking.pk),
            'status': 'confirmed' if confirmed else 'payment_received_booking_pending',
            'amount': 0,
        })

    return Response({
        'bookingId': str(booking.pk),
        'razorpayOrderId': gateway_order['id'],
        'amount': to_paise(booking.final_amount),
        'currency': gateway_order.get('currency', 'INR'),
        'keyId': get_key_id(),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PaymentVerifyThrottle])
def payment_verify(request):
    """Verify the checkout callback; safe to call more than once"""
    data = request.data
    booking_id = data.get('bookingId')
    payment_id = data.get('razorpay_payment_id')
    order_id = data.get('razorpay_order_id')
    signature = data.get('razorpay_signature')

    if not booking_id or not payment_id or not order_id or not signature:
        return Response({'error': 'Missing required payment parameters'}, status=status.HTTP_400_BAD_REQUEST)

    booking = _get_user_booking(request.user, booking_id)
    if booking is None:
        return Response({'error': 'Booking not found'}, status=status.HTTP_404_NOT_FOUND)

    try:
        outcome = verify_payment(booking, payment_id, order_id, signature)
    except CheckoutError as e:
        return Response({'error': e.message}, status=e.status_code)
    except PaymentGatewayError as e:
        logger.error(f"Gateway lookup failed while verifying {booking.pk}: {e.message}")
        return Response({'error': 'Payment gateway error', 'details': e.message}, status=status.HTTP_502_BAD_GATEWAY)

    if outcome == 'already_confirmed':
        return Response({'status': 'confirmed', 'message': 'Payment already verified'})
    if outcome == 'confirmed':
        return Response({'status': 'confirmed', 'bookingId': str(booking.pk)})
    return Response({
        'status': 'payment_received_booking_pending',
        'bookingId': str(booking.pk),
        'message': 'Payment received. Your booking is being processed and you will receive confirmation shortly.',
    })


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def payment_webhook(request):
    """Gateway webhook; signed with the webhook secret over the raw body"""
    raw_body = request.body
    signature = request.headers.get('X-Razorpay-Signature')
    if not signature:
        return Response({'error': 'Missing signature'}, status=status.HTTP_401_UNAUTHORIZED)

    if not verify_webhook_signature(raw_body, signature):
        logger.error("Webhook signature mismatch")
        return Response({'error': 'Invalid signature'}, status=status.HTTP_401_UNAUTHORIZED)

    try:
        payload = json.loads(raw_body.decode('utf-8'))
    except (UnicodeDecodeError, ValueError):
        return Response({'error': 'Invalid JSON payload'}, status=status.HTTP_400_BAD_REQUEST)

    event_id = request.headers.get('X-Razorpay-Event-Id') or payload.get('event_id') or payload.get('id')
    if not event_id:
        logger.error("Webhook without event id")
        return Response({'error': 'event_id missing'}, status=status.HTTP_400_BAD_REQUEST)

    return Response({'status': process_webhook(event_id, payload)})


# Bookings
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_list(request):
    bookings = Booking.objects.filter(user=request.user).prefetch_related('items').order_by('-created_at')
    return Response([
        {
            'id': str(b.pk),
            'partnerBookingId': b.partner_booking_id,
            'status': b.status,
            'paymentStatus': b.payment_status,
            'slotDate': b.slot_date,
            'slotTime': b.slot_time,
            'totalAmount': float(b.total_amount),
            'finalAmount': float(b.final_amount),
            'createdAt': b.created_at,
            'items': [item.test_name for item in b.items.all()],
        }
        for b in bookings
    ])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingStatusThrottle])
def booking_status(request, booking_id):
    """Track a booking with the partner and sync the local status label"""
    if _parse_uuid(booking_id) is None:
        return Response({'error': 'Invalid Booking ID format'}, status=status.HTTP_400_BAD_REQUEST)

    booking = _get_user_booking(request.user, booking_id)
    if booking is None:
        return Response({'error': 'Booking not found'}, status=status.HTTP_404_NOT_FOUND)
    if not booking.partner_booking_id:
        return Response({'error': 'Partner Booking ID missing for this order'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        response = get_client().get_booking_status(booking.partner_booking_id)
    except HealthiansError as e:
        logger.error(f"Status lookup failed for booking {booking.pk}: {e.message}")
        return Response({'error': 'Failed to fetch booking status'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    status_code = ((response or {}).get('data') or {}).get('booking_status')
    label = STATUS_CODE_TO_LABEL.get(status_code)
    if label and booking.status != label:
        Booking.objects.filter(pk=booking.pk).update(status=label, updated_at=timezone.now())
        logger.info(f"Synced booking {booking.pk} status to {label}")

    patient_details = {str(booking.user.id): {'name': booking.user.name or 'User', 'relation': 'Self'}}
    for item in booking.items.select_related('patient'):
        patient_details[str(item.patient.id)] = {'name': item.patient.name, 'relation': item.patient.relation}

    return Response(dict(response or {}, patientDetails=patient_details))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingCancelThrottle])
def booking_cancel(request, booking_id):
    """Cancel every active customer on the partner booking"""
    remarks = (request.data.get('remarks') or '').strip()
    if _parse_uuid(booking_id) is None:
        return Response({'error': 'Invalid Booking ID format'}, status=status.HTTP_400_BAD_REQUEST)
    if len(remarks) < 5:
        return Response({'error': 'Reason for cancellation must be at least 5 characters long'},
                        status=status.HTTP_400_BAD_REQUEST)

    booking = _get_user_booking(request.user, booking_id)
    if booking is None:
        return Response({'error': 'Booking not found or access denied'}, status=status.HTTP_404_NOT_FOUND)
    if not booking.partner_booking_id:
        return Response({'error': 'Internal record error: Partner Booking ID is missing'},
                        status=status.HTTP_400_BAD_REQUEST)
    if booking.status == 'Cancelled':
        return Response({'error': 'This booking is already cancelled'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        customers, partner_status, _ = _partner_customers(booking.partner_booking_id)
    except HealthiansError as e:
        logger.error(f"Status lookup before cancel failed for {booking.pk}: {e.message}")
        return Response({'error': 'Failed to fetch booking status'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if partner_status not in CANCELLABLE_PARTNER_STATUSES:
        return Response({'error': f'Cancellation not allowed. Current status is: {partner_status or "Unknown"}'},
                        status=status.HTTP_400_BAD_REQUEST)
    if not customers:
        return Response({'error': 'No active customers found to cancel'}, status=status.HTTP_400_BAD_REQUEST)

    client = get_client()
    results = []
    failures = []
    for customer in customers:
        if customer.get('customer_status') == 'BS0018':
            continue
        customer_id = customer.get('vendor_customer_id')
        try:
            cancel_response = retry_with_backoff(lambda: client.cancel_booking(
                booking.partner_booking_id, request.user.id, customer_id, remarks
            ))
        except HealthiansError as e:
            logger.error(f"Cancellation failed for customer {customer_id} on {booking.partner_booking_id}: {e.message}")
            failures.append({'customerId': customer_id, 'error': 'Partner API error'})
            continue
        results.append({
            'customerId': customer_id,
            'status': cancel_response.get('status'),
            'message': cancel_response.get('message'),
        })

    if not results:
        return Response({'error': 'Failed to cancel any customers on the partner platform', 'details': failures},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    Booking.objects.filter(pk=booking.pk).update(status='Cancelled', updated_at=timezone.now())
    logger.info(f"Booking {booking.pk} cancelled: {len(results)} ok, {len(failures)} failed")
    return Response({
        'message': 'Booking cancellation processed',
        'successCount': len(results),
        'failureCount': len(failures),
        'details': results,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingRescheduleThrottle])
def booking_reschedule(request, booking_id):
    """Move the booking to a new slot; the partner issues a new booking id"""
    data = request.data
    slot_id = data.get('slot_id')
    slot_date = data.get('slotDate')
    slot_time = data.get('slotTime')
    reason = (data.get('reschedule_reason') or '').strip()

    if _parse_uuid(booking_id) is None:
        return Response({'error': 'Invalid Booking ID format'}, status=status.HTTP_400_BAD_REQUEST)
    if not slot_id:
        return Response({'error': 'Slot ID is required'}, status=status.HTTP_400_BAD_REQUEST)
    if len(reason) < 5:
        return Response({'error': 'Reschedule reason must be at least 5 characters long'},
                        status=status.HTTP_400_BAD_REQUEST)

    booking = _get_user_booking(request.user, booking_id)
    if booking is None:
        return Response({'error': 'Booking not found'}, status=status.HTTP_404_NOT_FOUND)
    if booking.status in NON_RESCHEDULABLE_STATUSES:
        return Response({'error': f'Booking cannot be rescheduled in current status: {booking.status}'},
                        status=status.HTTP_400_BAD_REQUEST)
    if not booking.partner_booking_id:
        return Response({'error': 'Partner booking ID not found'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        customers, _, _ = _partner_customers(booking.partner_booking_id)
    except HealthiansError as e:
        logger.error(f"Status lookup before reschedule failed for {booking.pk}: {e.message}")
        return Response({'error': 'Failed to fetch booking status'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    if not customers:
        return Response({'error': 'No customers found for this booking'}, status=status.HTTP_400_BAD_REQUEST)

    payload = {
        'booking_id': booking.partner_booking_id,
        'slot': {'slot_id': str(slot_id)},
        'customers': [{'vendor_customer_id': str(c.get('vendor_customer_id'))} for c in customers],
        'reschedule_reason': reason,
    }
    try:
        response = get_client().reschedule_booking(payload)
    except HealthiansError as e:
        details = e.payload if isinstance(e.payload, dict) else None
        logger.error(f"Partner reschedule failed for {booking.pk}: {e.message}")
        return Response({
            'error': (details or {}).get('message') or 'Reschedule failed on partner platform',
            'details': details,
        }, status=status.HTTP_400_BAD_REQUEST)

    new_partner_id = ((response or {}).get('data') or {}).get('new_booking_id')
    if not response.get('status') or not new_partner_id:
        return Response({'error': response.get('message') or 'Failed to reschedule on partner platform'},
                        status=status.HTTP_400_BAD_REQUEST)

    with transaction.atomic():
        new_booking = Booking.objects.create(
            user=booking.user,
            address=booking.address,
            partner_booking_id=str(new_partner_id),
            status='Order Booked',
            payment_status=booking.payment_status,
            slot_date=slot_date or booking.slot_date,
            slot_time=slot_time or str(slot_id),
            total_amount=booking.total_amount,
            discount_amount=booking.discount_amount,
            wallet_amount=booking.wallet_amount,
            final_amount=booking.final_amount,
            promo_code=booking.promo_code,
            razorpay_order_id=booking.razorpay_order_id,
            paid_at=booking.paid_at,
        )
        BookingItem.objects.bulk_create([
            BookingItem(
                booking=new_booking,
                patient_id=item.patient_id,
                test_code=item.test_code,
                test_name=item.test_name,
                price=item.price,
            )
            for item in booking.items.all()
        ])
        Booking.objects.filter(pk=booking.pk).update(status='Rescheduled', updated_at=timezone.now())

    logger.info(f"Booking {booking.pk} rescheduled as {new_booking.pk} (partner {new_partner_id})")
    return Response({
        'success': True,
        'message': 'Booking rescheduled successfully',
        'new_booking_id': str(new_booking.pk),
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_reschedulable_slots(request, booking_id):
    if _parse_uuid(booking_id) is None:
        return Response({'error': 'Invalid Booking ID format'}, status=status.HTTP_400_BAD_REQUEST)

    booking = _get_user_booking(request.user, booking_id)
    if booking is None:
        return Response({'error': 'Booking not found'}, status=status.HTTP_404_NOT_FOUND)

    slot_date = request.query_params.get('date') or timezone.localdate().isoformat()
    address_id = request.query_params.get('addressId')
    address = _get_user_address(request.user, address_id) if address_id else None
    if address is None:
        addresses = Address.objects.filter(user=request.user).order_by('city')
        return Response({
            'error': 'No address associated with this booking',
            'code': 'ADDRESS_REQUIRED',
            'addresses': AddressSerializer(addresses, many=True).data,
        }, status=status.HTTP_400_BAD_REQUEST)

    lat = address.lat if address.lat is not None else DEFAULT_LAT
    long = address.long if address.long is not None else DEFAULT_LONG
    try:
        zone_id = get_zone_id(lat, long, address.pincode)
        if not zone_id:
            return Response({'error': 'Could not determine zone_id for rescheduling'},
                            status=status.HTTP_400_BAD_REQUEST)
        data = get_client().get_slots_by_location(
            lat, long, address.pincode, zone_id, slot_date,
            float(booking.total_amount), build_packages(booking.items.all())
        )
    except HealthiansError as e:
        logger.error(f"Reschedulable slots lookup failed for {booking.pk}: {e.message}")
        return Response({'error': 'Failed to fetch available slots for rescheduling'},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_phlebo_contact(request, booking_id):
    """Masked phlebotomist number once a collector is assigned"""
    if _parse_uuid(booking_id) is None:
        return Response({'error': 'Invalid Booking ID format'}, status=status.HTTP_400_BAD_REQUEST)

    booking = _get_user_booking(request.user, booking_id)
    if booking is None:
        return Response({'error': 'Booking not found'}, status=status.HTTP_404_NOT_FOUND)

    cache_key = get_phlebo_cache_key(booking.pk)
    cached = cache.get(cache_key)
    if cached is not None:
        return Response(cached)

    if not booking.partner_booking_id:
        return Response({'error': 'Partner Booking ID missing for this order'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        _, partner_status, _ = _partner_customers(booking.partner_booking_id)
        if partner_status != PHLEBO_VISIBLE_STATUS:
            return Response({
                'error': 'Phlebotomist contact is only available once assigned and before collection.',
                'currentStatus': partner_status,
            }, status=status.HTTP_400_BAD_REQUEST)
        response = get_client().get_phlebo_mask_number(booking.partner_booking_id)
    except HealthiansError as e:
        logger.error(f"Phlebo contact lookup failed for {booking.pk}: {e.message}")
        return Response({'error': 'Failed to fetch phlebotomist contact'},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if not response.get('status') or not response.get('data'):
        return Response({'error': response.get('message') or 'Phlebotomist details not available yet.'},
                        status=status.HTTP_400_BAD_REQUEST)

    result = {
        'masked_number': response['data'].get('masked_number'),
        'phlebo_name': response['data'].get('phlebo_name'),
    }
    cache.set(cache_key, result, PHLEBO_CONTACT_CACHE_TTL)
    return Response(result)


# Super-admin orders
@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_orders(request):
    page, limit = parse_pagination(request)
    status_filter = request.query_params.get('status')
    search = (request.query_params.get('search') or '').strip()

    queryset = Booking.objects.select_related('user').prefetch_related('items__patient')
    if status_filter and status_filter != 'All':
        queryset = queryset.filter(status=status_filter)

    if search:
        query = (
            Q(partner_booking_id__icontains=search) |
            Q(user__name__icontains=search) |
            Q(user__mobile__icontains=search) |
            Q(items__patient__name__icontains=search)
        )
        search_uuid = _parse_uuid(search)
        if search_uuid:
            query |= Q(id=search_uuid)
        queryset = queryset.filter(query).distinct()

    orders, pagination = paginate_queryset(queryset.order_by('-created_at'), page, limit)

    rows = []
    for order in orders:
        items = list(order.items.all())
        first_patient = items[0].patient if items else None
        rows.append({
            'id': str(order.pk),
            'partnerBookingId': order.partner_booking_id,
            'date': order.created_at,
            'slotDate': order.slot_date,
            'slotTime': order.slot_time,
            'amount': float(order.total_amount),
            'status': order.status,
            'paymentStatus': order.payment_status,
            'user': {
                'id': order.user.id,
                'name': order.user.name,
                'mobile': order.user.mobile,
                'email': order.user.email,
            },
            'patient': {
                'name': first_patient.name,
                'gender': first_patient.gender,
                'age': first_patient.age,
            } if first_patient else None,
            'testNames': [item.test_name for item in items],
        })

    return Response({'orders': rows, 'pagination': pagination})
