import logging
import re
import time
from decimal import Decimal, InvalidOperation

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db import transaction
from django.db.models import Q, Sum, Count

from backend.core.models import User
from backend.core.permissions import IsSuperAdmin
from backend.core.serializers import ProfileSerializer, UserSerializer
from backend.core.utils import create_audit_log, get_client_ip, parse_pagination, paginate_queryset
from backend.locations.geocoding import get_geodata_from_pincode
from .models import Patient, Address, Wallet, WalletLedgerEntry, ReferralReward
from .serializers import PatientSerializer, AddressSerializer, WalletLedgerEntrySerializer, AdminLedgerEntrySerializer
from .wallets import InsufficientBalance, get_or_create_wallet, wallet_balance_from_ledger

logger = logging.getLogger(__name__)

PINCODE_RE = re.compile(r'^\d{6}$')


def _owned_or_error(model, pk, user, not_found_message):
    """Fetch an object and check it belongs to user; returns (obj, error_response)"""
    obj = model.objects.filter(pk=pk).first()
    if obj is None:
        return None, Response({'error': not_found_message}, status=status.HTTP_404_NOT_FOUND)
    if obj.user_id != user.id:
        logger.warning(f"User {user.id} tried to access {model.__name__} {pk} owned by {obj.user_id}")
        return None, Response({'error': 'Unauthorized'}, status=status.HTTP_403_FORBIDDEN)
    return obj, None


# Profile
@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def profile(request):
    """Current user's profile, or update name/email/gender/age"""
    user = request.user
    if request.method == 'GET':
        return Response(ProfileSerializer(user).data)

    data = {key: request.data.get(key) for key in ('name', 'email', 'gender', 'age') if request.data.get(key)}
    if not data:
        return Response({'error': 'At least one field to update is required'}, status=status.HTTP_400_BAD_REQUEST)

    email = data.get('email')
    if email and User.objects.filter(email__iexact=email).exclude(pk=user.pk).exists():
        return Response({'error': 'Email already in use'}, status=status.HTTP_409_CONFLICT)

    serializer = UserSerializer(user, data=data, partial=True)
    if serializer.is_valid():
        serializer.save()
        logger.info(f"Profile updated for user {user.id}: {list(data)}")
        return Response({'message': 'Profile updated successfully', 'user': serializer.data})
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def profile_wallet(request):
    """Wallet balance with the last 20 transactions"""
    wallet = Wallet.objects.filter(user=request.user).first()
    if wallet is None:
        return Response({'balance': 0, 'transactions': []})

    transactions = wallet.ledger_entries.order_by('-created_at')[:20]
    return Response({
        'balance': float(wallet.balance),
        'transactions': WalletLedgerEntrySerializer(transactions, many=True).data,
    })


# Addresses
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def address_list_create(request):
    if request.method == 'GET':
        addresses = Address.objects.filter(user=request.user).order_by('city')
        return Response(AddressSerializer(addresses, many=True).data)

    line1 = request.data.get('line1')
    city = request.data.get('city')
    pincode = str(request.data.get('pincode') or '')
    if not line1 or not city or not pincode:
        return Response({'error': 'line1, city, and pincode are required'}, status=status.HTTP_400_BAD_REQUEST)
    if not PINCODE_RE.match(pincode):
        return Response({'error': 'Invalid pincode format'}, status=status.HTTP_400_BAD_REQUEST)

    lat = request.data.get('lat')
    long = request.data.get('long')
    if not lat or not long:
        geodata = get_geodata_from_pincode(pincode)
        if geodata:
            lat, long = geodata['lat'], geodata['long']
        else:
            logger.warning(f"No coordinates found for pincode {pincode}, saving address without them")

    serializer = AddressSerializer(data={
        'line1': line1,
        'city': city,
        'pincode': pincode,
        'lat': lat or None,
        'long': long or None,
    })
    if serializer.is_valid():
        address = serializer.save(user=request.user)
        return Response({'message': 'Address added successfully', 'address': AddressSerializer(address).data},
                        status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def address_detail(request, pk):
    address, error = _owned_or_error(Address, pk, request.user, 'Address not found')
    if error:
        return error

    if request.method == 'DELETE':
        address.delete()
        return Response({'message': 'Address deleted successfully'})

    data = {key: request.data[key] for key in ('line1', 'city', 'pincode', 'lat', 'long') if key in request.data}
    if 'pincode' in data:
        data['pincode'] = str(data['pincode'] or '')
        if not PINCODE_RE.match(data['pincode']):
            return Response({'error': 'Invalid pincode format'}, status=status.HTTP_400_BAD_REQUEST)

        pincode_changed = data['pincode'] != address.pincode
        if pincode_changed and not (data.get('lat') and data.get('long')):
            geodata = get_geodata_from_pincode(data['pincode'])
            if geodata:
                data['lat'], data['long'] = geodata['lat'], geodata['long']

    serializer = AddressSerializer(address, data=data, partial=True)
    if serializer.is_valid():
        serializer.save()
        return Response({'message': 'Address updated successfully', 'address': serializer.data})
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


# Patients (family members)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def patient_list_create(request):
    if request.method == 'GET':
        patients = Patient.objects.filter(user=request.user).order_by('name')
        return Response(PatientSerializer(patients, many=True).data)

    required = ('name', 'relation', 'age', 'gender')
    if any(request.data.get(field) in (None, '') for field in required):
        return Response({'error': 'All fields (name, relation, age, gender) are required'},
                        status=status.HTTP_400_BAD_REQUEST)

    serializer = PatientSerializer(data=request.data)
    if serializer.is_valid():
        patient = serializer.save(user=request.user)
        return Response({'message': 'Family member added successfully', 'patient': PatientSerializer(patient).data},
                        status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def patient_detail(request, pk):
    patient, error = _owned_or_error(Patient, pk, request.user, 'Family member not found')
    if error:
        return error

    if request.method == 'DELETE':
        if patient.booking_items.exists():
            return Response({'error': 'Family member has bookings and cannot be removed'},
                            status=status.HTTP_400_BAD_REQUEST)
        patient.delete()
        return Response({'message': 'Family member removed successfully'})

    serializer = PatientSerializer(patient, data=request.data, partial=True)
    if serializer.is_valid():
        serializer.save()
        return Response({'message': 'Family member updated successfully', 'patient': serializer.data})
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


# Super-admin wallets and referrals
@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def admin_wallet_adjust(request):
    """Credit or debit a user's wallet with an audit trail"""
    user_id = request.data.get('userId')
    txn_type = request.data.get('type')
    raw_amount = request.data.get('amount')
    reason = request.data.get('reason')

    if not user_id or not txn_type or not raw_amount or not reason:
        return Response({'error': 'Missing required fields'}, status=status.HTTP_400_BAD_REQUEST)

    if txn_type not in ('CREDIT', 'DEBIT'):
        return Response({'error': 'Invalid transaction type'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        amount = Decimal(str(raw_amount)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        amount = None
    if amount is None or not amount.is_finite() or amount <= 0:
        return Response({'error': 'Invalid amount'}, status=status.HTTP_400_BAD_REQUEST)

    user = User.objects.filter(pk=user_id).first() if str(user_id).isdigit() else None
    if user is None:
        return Response({'error': 'User not found'}, status=status.HTTP_404_NOT_FOUND)

    wallet = get_or_create_wallet(user)
    client_ip = get_client_ip(request)
    signed_amount = amount if txn_type == 'CREDIT' else -amount

    try:
        with transaction.atomic():
            wallet = Wallet.objects.select_for_update().get(pk=wallet.pk)
            balance = wallet_balance_from_ledger(wallet)
            if txn_type == 'DEBIT' and balance < amount:
                raise InsufficientBalance('Insufficient wallet balance')

            new_balance = balance + signed_amount
            entry = WalletLedgerEntry.objects.create(
                wallet=wallet,
                type=txn_type,
                amount=signed_amount,
                balance_after=new_balance,
                description=reason,
                reference_type='ADMIN_ADJUSTMENT',
                reference_id=f'ADMIN-{int(time.time() * 1000)}',
                created_by=request.user,
                ip_address=client_ip,
            )
            wallet.balance = new_balance
            wallet.save(update_fields=['balance', 'updated_at'])

            create_audit_log(
                request=request,
                action='WALLET_ADJUSTMENT',
                entity='Wallet',
                target_id=wallet.id,
                old_value={'balance': float(balance)},
                new_value={'balance': float(new_balance), 'amount': float(signed_amount), 'reason': reason},
                is_destructive=txn_type == 'DEBIT',
            )
    except InsufficientBalance as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    logger.info(f"Admin {request.user.id} adjusted wallet {wallet.id} by {signed_amount}, new balance {new_balance}")
    return Response({
        'success': True,
        'ledgerEntry': WalletLedgerEntrySerializer(entry).data,
        'newBalance': float(new_balance),
    })


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_wallet_ledger(request):
    """System-wide ledger with type and user search filters"""
    page, limit = parse_pagination(request)
    txn_type = request.query_params.get('type')
    search = (request.query_params.get('search') or '').strip()

    queryset = WalletLedgerEntry.objects.select_related('wallet__user', 'created_by')
    if txn_type in ('CREDIT', 'DEBIT'):
        queryset = queryset.filter(type=txn_type)
    if search:
        queryset = queryset.filter(
            Q(wallet__user__name__icontains=search) |
            Q(wallet__user__mobile__icontains=search) |
            Q(wallet__user__email__icontains=search)
        )

    entries, pagination = paginate_queryset(queryset.order_by('-created_at'), page, limit)
    return Response({'ledger': AdminLedgerEntrySerializer(entries, many=True).data, 'pagination': pagination})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_referral_stats(request):
    """Referral totals, top referrers and recent referred signups"""
    total_referrals = User.objects.filter(referred_by__isnull=False).count()
    distributed = ReferralReward.objects.filter(status='PROCESSED').aggregate(total=Sum('amount'))['total']
    pending = ReferralReward.objects.filter(status='PENDING').count()

    top_referrers = (
        User.objects.annotate(referral_count=Count('referrals', distinct=True))
        .filter(referral_count__gt=0)
        .order_by('-referral_count', 'id')[:10]
    )
    leaderboard = []
    for referrer in top_referrers:
        earnings = ReferralReward.objects.filter(
            referrer=referrer, reward_type='REFERRER_ORDER', status='PROCESSED'
        ).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')
        leaderboard.append({
            'id': referrer.id,
            'name': referrer.name,
            'mobile': referrer.mobile,
            'referralCode': referrer.referral_code,
            'totalReferrals': referrer.referral_count,
            'totalEarnings': float(earnings),
        })

    recent = User.objects.filter(referred_by__isnull=False).select_related('referred_by').order_by('-created_at')[:10]
    recent_activity = [
        {
            'id': u.id,
            'refereeName': u.name,
            'refereeMobile': u.mobile,
            'referrerName': u.referred_by.name,
            'referrerMobile': u.referred_by.mobile,
            'date': u.created_at,
            'status': 'COMPLETED' if u.is_verified else 'PENDING_VERIFICATION',
        }
        for u in recent
    ]

    return Response({
        'stats': {
            'totalReferrals': total_referrals,
            'totalRewardsDistributed': float(distributed or 0),
            'pendingRewards': pending,
        },
        'leaderboard': leaderboard,
        'recentActivity': recent_activity,
    })
