from django.contrib import admin
from .models import PromoCode, PromoRedemption


@admin.register(PromoCode)
class PromoCodeAdmin(admin.ModelAdmin):
    list_display = ['code', 'discount_type', 'discount_value', 'max_discount', 'redeemed_count',
                    'max_redemptions', 'starts_at', 'expires_at', 'is_active']
    list_filter = ['discount_type', 'is_active']
    search_fields = ['code', 'description']
    readonly_fields = ['redeemed_count', 'created_at', 'updated_at']


@admin.register(PromoRedemption)
class PromoRedemptionAdmin(admin.ModelAdmin):
    list_display = ['promo_code', 'user', 'booking', 'created_at']
    search_fields = ['promo_code__code', 'user__mobile']
    raw_id_fields = ['user', 'booking']
