from django.db import models
from django.utils import timezone
from decimal import Decimal
from backend.core.models import User


class PromoCode(models.Model):
    """Checkout promo codes"""
    DISCOUNT_TYPE_CHOICES = [
        ('PERCENTAGE', 'Percentage'),
        ('FLAT', 'Flat Amount'),
    ]

    code = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True, null=True)
    discount_type = models.CharField(max_length=20, choices=DISCOUNT_TYPE_CHOICES)
    discount_value = models.DecimalField(max_digits=10, decimal_places=2)
    max_discount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    min_order_value = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    max_redemptions = models.PositiveIntegerField(null=True, blank=True)
    max_per_user = models.PositiveIntegerField(default=1)
    redeemed_count = models.PositiveIntegerField(default=0)
    starts_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.code

    class Meta:
        db_table = 'promo_codes'
        ordering = ['-created_at']


class PromoRedemption(models.Model):
    """A promo code applied to a booking"""
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='promo_redemptions')
    promo_code = models.ForeignKey(PromoCode, on_delete=models.CASCADE, related_name='redemptions')
    booking = models.OneToOneField('orders.Booking', on_delete=models.CASCADE, related_name='promo_redemption')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.promo_code.code} - {self.user}"

    class Meta:
        db_table = 'promo_redemptions'
