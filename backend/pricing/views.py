import logging
from decimal import Decimal

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_datetime

from backend.core.permissions import IsSuperAdmin
from backend.core.utils import create_audit_log, parse_pagination, paginate_queryset
from .models import PromoCode
from .promos import PromoError, available_promos, calculate_discount, get_promo, validate_promo
from .serializers import PromoCodeSerializer, AvailablePromoSerializer

logger = logging.getLogger(__name__)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def promo_available(request):
    """Promos the current user can still apply"""
    promos = available_promos(request.user)
    return Response(AvailablePromoSerializer(promos, many=True).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def promo_validate(request):
    """Check a promo against a cart amount and preview the discount"""
    raw_code = request.data.get('code')
    cart_amount = request.data.get('cartAmount')

    if not raw_code or isinstance(cart_amount, bool) or not isinstance(cart_amount, (int, float)):
        return Response({'error': 'Missing code or invalid cartAmount'}, status=status.HTTP_400_BAD_REQUEST)

    cart_amount = Decimal(str(cart_amount))
    promo = get_promo(raw_code)
    try:
        validate_promo(promo, request.user, cart_amount)
    except PromoError as e:
        return Response({'valid': False, 'error': e.message}, status=status.HTTP_400_BAD_REQUEST)

    discount = calculate_discount(promo, cart_amount)
    return Response({
        'valid': True,
        'discountAmount': float(discount),
        'finalAmount': float(max(Decimal('0'), cart_amount - discount)),
        'promoCodeId': promo.id,
        'description': promo.description,
        'code': promo.code,
        'discountType': promo.discount_type,
        'discountValue': float(promo.discount_value),
    })


# Super-admin promo management
@api_view(['GET', 'POST'])
@permission_classes([IsSuperAdmin])
def admin_promo_list_create(request):
    """List promo codes (paginated) or create a new one"""
    if request.method == 'GET':
        page, limit = parse_pagination(request)
        promos, pagination = paginate_queryset(PromoCode.objects.order_by('-created_at'), page, limit)
        return Response({'promos': PromoCodeSerializer(promos, many=True).data, 'pagination': pagination})

    data = request.data
    code = (data.get('code') or '').strip().upper()
    discount_type = data.get('discountType')
    discount_value = data.get('discountValue')

    if not code or not discount_type or not discount_value:
        return Response({'error': 'Missing required fields: code, discountType, discountValue'},
                        status=status.HTTP_400_BAD_REQUEST)

    if discount_type not in ('PERCENTAGE', 'FLAT'):
        return Response({'error': 'discountType must be PERCENTAGE or FLAT'}, status=status.HTTP_400_BAD_REQUEST)

    if PromoCode.objects.filter(code=code).exists():
        return Response({'error': 'Promo code already exists'}, status=status.HTTP_409_CONFLICT)

    payload = {
        'code': code,
        'description': data.get('description') or None,
        'discount_type': discount_type,
        'discount_value': discount_value,
        'max_discount': data.get('maxDiscount') or None,
        'min_order_value': data.get('minOrderValue') or 0,
        'max_redemptions': data.get('maxRedemptions') or None,
        'max_per_user': data.get('maxPerUser') or 1,
        'expires_at': data.get('expiresAt') or None,
        'is_active': True,
    }
    if data.get('startsAt'):
        payload['starts_at'] = data.get('startsAt')

    serializer = PromoCodeSerializer(data=payload)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    with transaction.atomic():
        promo = serializer.save()
        create_audit_log(
            request=request,
            action='CREATE',
            entity='PromoCode',
            target_id=promo.id,
            new_value={
                'code': promo.code,
                'discountType': promo.discount_type,
                'discountValue': str(promo.discount_value),
            },
        )

    logger.info(f"Promo {promo.code} created by admin {request.user.id}")
    return Response(PromoCodeSerializer(promo).data, status=status.HTTP_201_CREATED)


@api_view(['PUT'])
@permission_classes([IsSuperAdmin])
def admin_promo_update(request, pk):
    """Toggle a promo or change its expiry"""
    promo = get_object_or_404(PromoCode, pk=pk)
    old_value = {
        'isActive': promo.is_active,
        'expiresAt': promo.expires_at.isoformat() if promo.expires_at else None,
    }

    if 'isActive' in request.data:
        promo.is_active = bool(request.data.get('isActive'))

    expires_at = request.data.get('expiresAt')
    if expires_at:
        parsed = parse_datetime(expires_at) if isinstance(expires_at, str) else None
        if parsed is None:
            return Response({'error': 'Invalid expiresAt'}, status=status.HTTP_400_BAD_REQUEST)
        promo.expires_at = parsed

    with transaction.atomic():
        promo.save()
        create_audit_log(
            request=request,
            action='UPDATE',
            entity='PromoCode',
            target_id=promo.id,
            old_value=old_value,
            new_value={
                'isActive': promo.is_active,
                'expiresAt': promo.expires_at.isoformat() if promo.expires_at else None,
            },
        )

    return Response(PromoCodeSerializer(promo).data)
