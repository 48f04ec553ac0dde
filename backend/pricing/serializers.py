from rest_framework import serializers
from .models import PromoCode


class PromoCodeSerializer(serializers.ModelSerializer):
    class Meta:
        model = PromoCode
        fields = [
            'id', 'code', 'description', 'discount_type', 'discount_value', 'max_discount',
            'min_order_value', 'max_redemptions', 'max_per_user', 'redeemed_count',
            'starts_at', 'expires_at', 'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = ['redeemed_count', 'created_at', 'updated_at']

    def validate_code(self, value):
        return value.strip().upper()


class AvailablePromoSerializer(serializers.ModelSerializer):
    """Customer-facing promo; redemption counters stay internal"""
    class Meta:
        model = PromoCode
        fields = [
            'id', 'code', 'description', 'discount_type', 'discount_value',
            'max_discount', 'min_order_value', 'expires_at'
        ]

