"""
Promo code rules: discount calculation, validation and redemption counters.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.db.models import F, Q
from django.utils import timezone

from .models import PromoCode, PromoRedemption

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


class PromoError(Exception):
    """Promo code cannot be applied; message is safe to show the customer"""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


def _format_amount(value):
    value = Decimal(value)
    return str(value.quantize(Decimal('1'))) if value == value.to_integral() else str(value.normalize())


def calculate_discount(promo, total):
    """Discount for a cart total; never more than the total itself"""
    total = Decimal(str(total))
    if total < promo.min_order_value:
        return Decimal('0.00')

    if promo.discount_type == 'PERCENTAGE':
        discount = total * promo.discount_value / Decimal('100')
        if promo.max_discount and discount > promo.max_discount:
            discount = promo.max_discount
    else:
        discount = promo.discount_value

    return min(discount, total).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def get_promo(code):
    if not code:
        return None
    return PromoCode.objects.filter(code=str(code).strip().upper()).first()


def validate_promo(promo, user, cart_amount, now=None):
    """Raise PromoError if the promo cannot be used by this user for this amount"""
    now = now or timezone.now()
    cart_amount = Decimal(str(cart_amount))

    if promo is None or not promo.is_active:
        raise PromoError('Invalid or inactive promo code')

    if promo.expires_at and now > promo.expires_at:
        raise PromoError('Promo code expired')

    if now < promo.starts_at:
        raise PromoError('Promo code not yet active')

    if promo.max_redemptions is not None and promo.redeemed_count >= promo.max_redemptions:
        raise PromoError('Promo usage limit reached')

    if cart_amount < promo.min_order_value:
        raise PromoError(f'Minimum order value of ₹{_format_amount(promo.min_order_value)} required')

    used = PromoRedemption.objects.filter(user=user, promo_code=promo).count()
    if used >= promo.max_per_user:
        if promo.max_per_user == 1:
            raise PromoError('You have already used this promo code')
        raise PromoError(f'You have used this promo code {used}/{promo.max_per_user} times')


def lock_promo(promo):
    """
    Reserve one redemption. The conditional increment only succeeds while
    redeemed_count is below max_redemptions, so concurrent checkouts cannot
    oversell a limited promo.
    """
    updated = PromoCode.objects.filter(pk=promo.pk).filter(
        Q(max_redemptions__isnull=True) | Q(redeemed_count__lt=F('max_redemptions'))
    ).update(redeemed_count=F('redeemed_count') + 1)

    if not updated:
        raise PromoError('Promo usage limit reached')
    promo.refresh_from_db(fields=['redeemed_count'])
    return promo


def release_promo(booking):
    """Drop the booking's redemption and give the slot back to the promo"""
    redemption = PromoRedemption.objects.filter(booking=booking).select_related('promo_code').first()
    if not redemption:
        return False

    promo = redemption.promo_code
    redemption.delete()
    PromoCode.objects.filter(pk=promo.pk, redeemed_count__gt=0).update(redeemed_count=F('redeemed_count') - 1)
    logger.info(f"Released promo {promo.code} from booking {booking.pk}")
    return True


def available_promos(user, now=None):
    """Active, started, unexpired promos the user has not redeemed and that still have capacity"""
    now = now or timezone.now()
    redeemed_ids = PromoRedemption.objects.filter(user=user).values_list('promo_code_id', flat=True)
    return (
        PromoCode.objects.filter(is_active=True, starts_at__lte=now)
        .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
        .filter(Q(max_redemptions__isnull=True) | Q(redeemed_count__lt=F('max_redemptions')))
        .exclude(id__in=redeemed_ids)
        .order_by('-created_at')
    )
