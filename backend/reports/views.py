import logging
from datetime import timedelta
from decimal import Decimal

from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from django.db.models import Sum, DecimalField
from django.db.models.functions import TruncDate
from django.utils import timezone

from backend.core.cache_utils import get_cached_dashboard_kpis, cache_dashboard_kpis
from backend.core.models import User
from backend.core.permissions import IsSuperAdmin
from backend.orders.models import Booking
from backend.parties.models import WalletLedgerEntry, ReferralReward

logger = logging.getLogger(__name__)

REVENUE_TREND_DAYS = 30
HIGH_VALUE_THRESHOLD = Decimal('2000')
HIGH_VALUE_LIMIT = 5


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def dashboard_stats(request):
    """Dashboard KPIs, cached for 5 minutes"""
    try:
        cached_data, cache_key = get_cached_dashboard_kpis()
        if cached_data:
            logger.info(f"Dashboard KPIs cache HIT (user: {request.user.id})")
            response = Response(cached_data)
            response['X-Cache'] = 'HIT'
            return response
    except Exception as e:
        logger.warning(f"Cache unavailable, proceeding without cache: {e}")
        cache_key = None

    now = timezone.now()
    today_start = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)

    users = User.objects.filter(role='USER')
    total_revenue = Booking.objects.aggregate(
        total=Sum('total_amount', output_field=DecimalField())
    )['total'] or Decimal('0.00')
    total_wallet_balance = WalletLedgerEntry.objects.aggregate(
        total=Sum('amount', output_field=DecimalField())
    )['total'] or Decimal('0.00')
    referral_payouts = ReferralReward.objects.filter(
        status='PROCESSED',
        processed_at__gte=now - timedelta(days=7),
    ).aggregate(total=Sum('amount', output_field=DecimalField()))['total'] or Decimal('0.00')

    data = {
        'totalRevenue': float(total_revenue),
        'totalUsers': users.count(),
        'newUsersToday': users.filter(created_at__gte=today_start).count(),
        'totalOrders': Booking.objects.count(),
        'ordersToday': Booking.objects.filter(created_at__gte=today_start).count(),
        'pendingReports': Booking.objects.exclude(status='Report Generated').count(),
        'totalWalletBalance': float(total_wallet_balance),
        'referralPayoutsThisWeek': float(referral_payouts),
    }

    if cache_key:
        try:
            cache_dashboard_kpis(cache_key, data)
        except Exception as e:
            logger.warning(f"Failed to cache dashboard KPIs: {e}")

    response = Response(data)
    response['X-Cache'] = 'MISS'
    return response


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def revenue_trend(request):
    """Daily revenue for the last 30 days plus today, zero-filled"""
    today = timezone.localdate()
    start_date = today - timedelta(days=REVENUE_TREND_DAYS)

    daily = (
        Booking.objects.filter(created_at__date__gte=start_date)
        .exclude(status='Cancelled')
        .annotate(day=TruncDate('created_at'))
        .values('day')
        .annotate(total=Sum('total_amount', output_field=DecimalField()))
    )
    revenue_by_day = {row['day']: row['total'] or Decimal('0.00') for row in daily}

    chart_data = []
    for offset in range(REVENUE_TREND_DAYS + 1):
        day = start_date + timedelta(days=offset)
        chart_data.append({
            'date': day.strftime('%d %b'),
            'revenue': float(revenue_by_day.get(day, 0)),
        })

    return Response({'chartData': chart_data})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def high_value_orders(request):
    """Most recent bookings worth 2000 or more"""
    bookings = (
        Booking.objects.filter(total_amount__gte=HIGH_VALUE_THRESHOLD)
        .select_related('user')
        .order_by('-created_at')[:HIGH_VALUE_LIMIT]
    )
    orders = [
        {
            'id': str(booking.id),
            'status': booking.status,
            'paymentStatus': booking.payment_status,
            'totalAmount': float(booking.total_amount),
            'finalAmount': float(booking.final_amount),
            'slotDate': booking.slot_date,
            'createdAt': booking.created_at,
            'user': {'name': booking.user.name, 'mobile': booking.user.mobile},
        }
        for booking in bookings
    ]
    return Response({'orders': orders})
