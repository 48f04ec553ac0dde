import logging
import math
import re
from datetime import timedelta

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework_simplejwt.views import TokenRefreshView
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.tokens import RefreshToken
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from django.utils import timezone

from backend.parties.models import Wallet
from backend.parties.referrals import award_signup_bonus, generate_unique_referral_code
from .models import OTPCode, SystemConfig, AuditLog
from .permissions import IsSuperAdmin
from .serializers import (
    UserSerializer, SystemConfigSerializer, AuditLogSerializer, CallbackRequestSerializer
)
from .utils import create_audit_log, generate_otp, parse_pagination, paginate_queryset

logger = logging.getLogger(__name__)

User = get_user_model()

OTP_EXPIRY_MINS = 5
MAX_OTP_ATTEMPTS = 5
RESEND_COOLDOWN_SECONDS = 60

MOBILE_RE = re.compile(r'^\d{10}$')


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Custom token refresh serializer that handles deleted users gracefully"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except (ObjectDoesNotExist, User.DoesNotExist):
            # User referenced in token doesn't exist anymore
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    """Custom token refresh view that handles deleted users gracefully"""
    serializer_class = CustomTokenRefreshSerializer


def _issue_token(user):
    return str(RefreshToken.for_user(user).access_token)


def _auth_payload(user, message, include_role=False, include_referral=False):
    user_data = {
        'id': user.id,
        'name': user.name,
        'mobile': user.mobile,
        'email': user.email,
    }
    if include_role:
        user_data['role'] = user.role
    if include_referral:
        user_data['referralCode'] = user.referral_code
    return {'message': message, 'token': _issue_token(user), 'user': user_data}


def _upsert_otp(mobile):
    """Issue a fresh OTP for the identifier, resetting attempts"""
    code = generate_otp()
    OTPCode.objects.update_or_create(
        identifier=mobile,
        defaults={
            'code': code,
            'expires_at': timezone.now() + timedelta(minutes=OTP_EXPIRY_MINS),
            'attempts': 0,
        }
    )
    return code


def _valid_otp(mobile, code):
    otp = OTPCode.objects.filter(identifier=mobile).first()
    if not otp or timezone.now() > otp.expires_at or otp.code != str(code):
        return None
    return otp


# Signup flow
@api_view(['POST'])
@permission_classes([AllowAny])
def signup_send_otp(request):
    """Send a signup OTP to a new mobile number"""
    mobile = str(request.data.get('mobile') or '')
    email = request.data.get('email')

    if not MOBILE_RE.match(mobile):
        return Response({'error': 'Valid 10-digit Mobile Number is required'}, status=status.HTTP_400_BAD_REQUEST)

    if User.objects.filter(mobile=mobile).exists():
        return Response({'error': 'User with this mobile number already exists. Please login.'},
                        status=status.HTTP_409_CONFLICT)

    if email and User.objects.filter(email=email).exists():
        return Response({'error': 'User with this email already exists.'}, status=status.HTTP_409_CONFLICT)

    code = _upsert_otp(mobile)
    logger.info(f"[AUTH-SIGNUP] OTP for {mobile}: {code}")
    return Response({'message': 'OTP sent successfully', 'expiry': OTP_EXPIRY_MINS})


@api_view(['POST'])
@permission_classes([AllowAny])
def signup_verify(request):
    """Verify the signup OTP and create the account with its wallet"""
    data = request.data
    mobile = data.get('mobile')
    code = data.get('code')
    password = data.get('password')
    age = data.get('age')

    if not mobile or not code or not password or not age:
        return Response({'error': 'Missing required fields'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        age = int(age)
    except (TypeError, ValueError):
        return Response({'error': 'Age must be a number'}, status=status.HTTP_400_BAD_REQUEST)

    otp = _valid_otp(mobile, code)
    if not otp:
        return Response({'error': 'Invalid or Expired OTP'}, status=status.HTTP_400_BAD_REQUEST)

    referrer = None
    applied_code = data.get('referralCode')
    if applied_code:
        referrer = User.objects.filter(referral_code=applied_code.strip().upper()).first()
        if not referrer:
            return Response({'error': 'Invalid referral code', 'code': 'INVALID_REFERRAL'},
                            status=status.HTTP_400_BAD_REQUEST)

    email = data.get('email') or None
    if User.objects.filter(mobile=mobile).exists():
        return Response({'error': 'User with this mobile number already exists. Please login.'},
                        status=status.HTTP_409_CONFLICT)
    if email and User.objects.filter(email=email).exists():
        return Response({'error': 'User with this email already exists.'}, status=status.HTTP_409_CONFLICT)

    name = data.get('name') or None
    try:
        with transaction.atomic():
            user = User.objects.create_user(
                username=mobile,
                password=password,
                mobile=mobile,
                age=age,
                name=name,
                email=email,
                is_verified=True,
                referral_code=generate_unique_referral_code(name),
                referred_by=referrer,
            )
            Wallet.objects.create(user=user)
            otp.delete()
    except IntegrityError as e:
        # A concurrent signup took the mobile or email after the checks above
        logger.warning(f"Signup for {mobile} lost a uniqueness race: {str(e)}")
        return Response({'error': 'User with this mobile number or email already exists.'},
                        status=status.HTTP_409_CONFLICT)

    # Bonus failures are logged inside and never fail the signup
    if referrer:
        award_signup_bonus(referrer, user)

    logger.info(f"User {user.id} signed up with mobile {mobile}")
    return Response(
        _auth_payload(user, 'User created successfully', include_referral=True),
        status=status.HTTP_201_CREATED
    )


# Login flow
@api_view(['POST'])
@permission_classes([AllowAny])
def login_password(request):
    """Login with mobile and password"""
    mobile = request.data.get('mobile')
    password = request.data.get('password')

    if not mobile or not password:
        return Response({'error': 'Mobile and Password required'}, status=status.HTTP_400_BAD_REQUEST)

    user = User.objects.filter(mobile=mobile).first()
    if not user or not user.check_password(password):
        return Response({'error': 'Invalid credentials'}, status=status.HTTP_401_UNAUTHORIZED)

    if user.status == 'BLOCKED':
        return Response({'error': 'Account is blocked. Please contact support.'}, status=status.HTTP_403_FORBIDDEN)

    return Response(_auth_payload(user, 'Login successful', include_role=True))


@api_view(['POST'])
@permission_classes([AllowAny])
def login_send_otp(request):
    """Send a login OTP to an existing user"""
    mobile = request.data.get('mobile')
    if not mobile:
        return Response({'error': 'Mobile number required'}, status=status.HTTP_400_BAD_REQUEST)

    if not User.objects.filter(mobile=mobile).exists():
        return Response({'error': 'User does not exist. Please Signup.'}, status=status.HTTP_404_NOT_FOUND)

    code = _upsert_otp(mobile)
    logger.info(f"[AUTH-LOGIN] OTP for {mobile}: {code}")
    return Response({'message': 'OTP sent successfully', 'expiry': OTP_EXPIRY_MINS})


@api_view(['POST'])
@permission_classes([AllowAny])
def login_verify_otp(request):
    """Verify a login OTP and issue a token"""
    mobile = request.data.get('mobile')
    code = request.data.get('code')

    otp = _valid_otp(mobile, code)
    if not otp:
        return Response({'error': 'Invalid or Expired OTP'}, status=status.HTTP_400_BAD_REQUEST)

    user = User.objects.filter(mobile=mobile).first()
    if not user:
        return Response({'error': 'User not found'}, status=status.HTTP_404_NOT_FOUND)

    if user.status == 'BLOCKED':
        return Response({'error': 'Account is blocked. Please contact support.'}, status=status.HTTP_403_FORBIDDEN)

    if not user.is_verified:
        user.is_verified = True
        user.save(update_fields=['is_verified'])

    otp.delete()
    return Response(_auth_payload(user, 'Login successful', include_role=True))


# Forgot password flow
@api_view(['POST'])
@permission_classes([AllowAny])
def forgot_password_send_otp(request):
    """Send a password reset OTP, honouring the resend cooldown"""
    mobile = str(request.data.get('mobile') or '')

    if not MOBILE_RE.match(mobile):
        return Response({'error': 'Valid 10-digit mobile number is required'}, status=status.HTTP_400_BAD_REQUEST)

    if not User.objects.filter(mobile=mobile).exists():
        return Response({'error': 'No account found with this mobile number.'}, status=status.HTTP_404_NOT_FOUND)

    existing = OTPCode.objects.filter(identifier=mobile).first()
    if existing:
        elapsed = (timezone.now() - existing.updated_at).total_seconds()
        if elapsed < RESEND_COOLDOWN_SECONDS:
            wait_time = math.ceil(RESEND_COOLDOWN_SECONDS - elapsed)
            return Response({
                'error': f'Please wait {wait_time}s before requesting a new code',
                'retryAfter': wait_time
            }, status=status.HTTP_429_TOO_MANY_REQUESTS)

    code = _upsert_otp(mobile)
    logger.info(f"[AUTH-RESET] OTP for {mobile}: {code}")
    return Response({'message': 'Reset OTP sent successfully', 'expiry': OTP_EXPIRY_MINS})


@api_view(['POST'])
@permission_classes([AllowAny])
def forgot_password_verify_reset(request):
    """Verify the reset OTP and set a new password"""
    mobile = request.data.get('mobile')
    code = request.data.get('code')
    new_password = request.data.get('newPassword')

    if not mobile or not code or not new_password:
        return Response({'error': 'All fields are required'}, status=status.HTTP_400_BAD_REQUEST)

    if len(new_password) < 6:
        return Response({'error': 'Password must be at least 6 characters'}, status=status.HTTP_400_BAD_REQUEST)
    if not re.search(r'[a-zA-Z]', new_password) or not re.search(r'\d', new_password):
        return Response({'error': 'Password must contain at least one letter and one number'},
                        status=status.HTTP_400_BAD_REQUEST)

    otp = OTPCode.objects.filter(identifier=mobile).first()
    if not otp:
        return Response({'error': 'No reset request found. Please request a new code.'},
                        status=status.HTTP_400_BAD_REQUEST)

    if timezone.now() > otp.expires_at:
        otp.delete()
        return Response({'error': 'Code has expired. Please request a new one.'}, status=status.HTTP_400_BAD_REQUEST)

    if otp.attempts >= MAX_OTP_ATTEMPTS:
        otp.delete()
        return Response({'error': 'Too many failed attempts. Please request a new code.'},
                        status=status.HTTP_429_TOO_MANY_REQUESTS)

    if otp.code != str(code):
        otp.attempts += 1
        otp.save(update_fields=['attempts', 'updated_at'])
        remaining = MAX_OTP_ATTEMPTS - otp.attempts
        if remaining > 0:
            message = f"Invalid code. {remaining} attempt{'s' if remaining > 1 else ''} remaining."
        else:
            message = 'Invalid code. Please request a new code.'
        return Response({'error': message, 'remainingAttempts': remaining}, status=status.HTTP_400_BAD_REQUEST)

    user = User.objects.filter(mobile=mobile).first()
    if not user:
        otp.delete()
        return Response({'error': 'User not found'}, status=status.HTTP_404_NOT_FOUND)

    user.set_password(new_password)
    user.save(update_fields=['password'])
    otp.delete()

    logger.info(f"[AUTH-RESET] Password reset successful for {mobile}")
    return Response({'message': 'Password reset successfully. Please login with your new password.'})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Get current user"""
    return Response(UserSerializer(request.user).data)


@api_view(['POST'])
@permission_classes([AllowAny])
def callback_request(request):
    """Public "request a callback" form"""
    name = request.data.get('name')
    mobile = request.data.get('mobile')

    if not name or not mobile:
        return Response({'error': 'Name and mobile are required'}, status=status.HTTP_400_BAD_REQUEST)

    serializer = CallbackRequestSerializer(data={
        'name': name,
        'mobile': mobile,
        'city': request.data.get('city') or 'Unspecified',
    })
    if serializer.is_valid():
        serializer.save()
        logger.info(f"Callback requested by {name} ({mobile})")
        return Response({'message': 'Callback request submitted successfully', 'data': serializer.data},
                        status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


# Super-admin console
@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_health(request):
    return Response({'ok': True, 'admin': request.user.name})


def _user_row(user):
    wallet = getattr(user, 'wallet', None)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'mobile': user.mobile,
        'role': user.role,
        'status': user.status,
        'referralCode': user.referral_code,
        'totalOrders': getattr(user, 'total_orders', 0),
        'walletBalance': float(wallet.balance) if wallet else 0,
        'createdAt': user.created_at,
    }


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_user_list(request):
    """List storefront users and managers (paginated)"""
    page, limit = parse_pagination(request)
    search = request.query_params.get('search', '').strip()
    status_filter = request.query_params.get('status')
    role_filter = request.query_params.get('role')

    queryset = User.objects.select_related('wallet').annotate(total_orders=Count('bookings'))

    if role_filter in ('USER', 'MANAGER'):
        queryset = queryset.filter(role=role_filter)
    else:
        queryset = queryset.filter(role__in=['USER', 'MANAGER'])

    if search:
        queryset = queryset.filter(
            Q(name__icontains=search) |
            Q(email__icontains=search) |
            Q(mobile__icontains=search)
        )

    if status_filter in ('ACTIVE', 'BLOCKED'):
        queryset = queryset.filter(status=status_filter)

    users, pagination = paginate_queryset(queryset.order_by('-created_at'), page, limit)
    return Response({'users': [_user_row(u) for u in users], 'pagination': pagination})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_user_detail(request, pk):
    """User detail with wallet, ledger, orders and referral info"""
    from backend.orders.models import Booking
    from backend.orders.serializers import BookingSerializer
    from backend.parties.serializers import WalletLedgerEntrySerializer

    user = get_object_or_404(User.objects.select_related('wallet', 'referred_by'), pk=pk)
    wallet = getattr(user, 'wallet', None)

    ledger = wallet.ledger_entries.order_by('-created_at')[:20] if wallet else []
    bookings = (
        Booking.objects.filter(user=user)
        .select_related('address')
        .prefetch_related('items__patient')
        .order_by('-created_at')[:50]
    )

    referred_by = None
    if user.referred_by:
        referred_by = {
            'id': user.referred_by.id,
            'name': user.referred_by.name,
            'mobile': user.referred_by.mobile,
        }

    return Response({
        'user': {
            'id': user.id,
            'name': user.name,
            'email': user.email,
            'mobile': user.mobile,
            'role': user.role,
            'status': user.status,
            'referralCode': user.referral_code,
            'createdAt': user.created_at,
        },
        'wallet': {'balance': float(wallet.balance) if wallet else 0},
        'walletLedger': WalletLedgerEntrySerializer(ledger, many=True).data,
        'orders': BookingSerializer(bookings, many=True).data,
        'referralInfo': {
            'referredBy': referred_by,
            'referredCount': user.referrals.count(),
        },
    })


@api_view(['PUT'])
@permission_classes([IsSuperAdmin])
def admin_user_status(request, pk):
    """Block or unblock a user"""
    new_status = request.data.get('status')
    reason = request.data.get('reason') or ''

    if new_status not in ('ACTIVE', 'BLOCKED'):
        return Response({'error': 'Invalid status. Must be ACTIVE or BLOCKED'}, status=status.HTTP_400_BAD_REQUEST)

    user = get_object_or_404(User, pk=pk)
    old_status = user.status

    with transaction.atomic():
        user.status = new_status
        user.save(update_fields=['status', 'updated_at'])
        create_audit_log(
            request=request,
            action='USER_BLOCKED' if new_status == 'BLOCKED' else 'USER_UNBLOCKED',
            entity='User',
            target_id=user.id,
            old_value={'status': old_status},
            new_value={'status': new_status, 'reason': reason},
            is_destructive=new_status == 'BLOCKED',
        )

    logger.info(f"Admin {request.user.id} set user {user.id} status {old_status} -> {new_status}")
    return Response({
        'success': True,
        'message': f"User {'blocked' if new_status == 'BLOCKED' else 'unblocked'} successfully"
    })


@api_view(['PUT'])
@permission_classes([IsSuperAdmin])
def admin_user_role(request, pk):
    """Promote a user to MANAGER or demote back to USER"""
    new_role = request.data.get('role')

    if new_role not in ('USER', 'MANAGER'):
        return Response({'error': 'Invalid role. Must be USER or MANAGER'}, status=status.HTTP_400_BAD_REQUEST)

    if int(pk) == request.user.id:
        return Response({'error': 'Cannot change your own role'}, status=status.HTTP_400_BAD_REQUEST)

    user = get_object_or_404(User, pk=pk)

    if user.role == 'SUPER_ADMIN':
        return Response({'error': 'Cannot modify a SUPER_ADMIN role'}, status=status.HTTP_403_FORBIDDEN)

    old_role = user.role
    with transaction.atomic():
        user.role = new_role
        user.save(update_fields=['role', 'updated_at'])
        create_audit_log(
            request=request,
            action='USER_PROMOTED_MANAGER' if new_role == 'MANAGER' else 'USER_DEMOTED_FROM_MANAGER',
            entity='User',
            target_id=user.id,
            old_value={'role': old_role},
            new_value={'role': new_role},
            is_destructive=new_role == 'USER',
        )

    return Response({
        'success': True,
        'message': f'User role updated to {new_role}',
        'user': {'id': user.id, 'name': user.name, 'mobile': user.mobile, 'role': new_role},
    })


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_config_list(request):
    configs = SystemConfig.objects.all().order_by('key')
    return Response({'configs': SystemConfigSerializer(configs, many=True).data})


@api_view(['PUT'])
@permission_classes([IsSuperAdmin])
def admin_config_update(request, key):
    """Upsert a SystemConfig value"""
    value = request.data.get('value')
    reason = request.data.get('reason') or ''

    if value is None or value == '':
        return Response({'error': 'Value is required'}, status=status.HTTP_400_BAD_REQUEST)

    value = str(value)
    existing = SystemConfig.objects.filter(key=key).first()
    old_value = existing.value if existing else None

    with transaction.atomic():
        config, _ = SystemConfig.objects.update_or_create(
            key=key,
            defaults={'value': value, 'updated_by': request.user}
        )
        create_audit_log(
            request=request,
            action='CONFIG_UPDATED',
            entity='SystemConfig',
            target_id=key,
            old_value={'value': old_value} if old_value is not None else None,
            new_value={'value': value, 'reason': reason},
        )

    logger.info(f"Config {key} updated by admin {request.user.id}: {old_value} -> {value}")
    return Response({'success': True, 'config': SystemConfigSerializer(config).data})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_audit_logs(request):
    """List audit logs with search and action filter"""
    page, limit = parse_pagination(request)
    search = request.query_params.get('search', '').strip()
    action = request.query_params.get('action')

    queryset = AuditLog.objects.all()

    if action and action != 'All':
        queryset = queryset.filter(action=action)

    if search:
        queryset = queryset.filter(
            Q(admin_name__icontains=search) |
            Q(entity__icontains=search) |
            Q(target_id__icontains=search)
        )

    logs, pagination = paginate_queryset(queryset.order_by('-created_at'), page, limit)
    return Response({'logs': AuditLogSerializer(logs, many=True).data, 'pagination': pagination})
