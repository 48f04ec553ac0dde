from django.contrib import admin
from .models import Cart, CartItem, Booking, BookingItem, WebhookEvent, PartnerRetry


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    raw_id_fields = ['patient']


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'created_at', 'updated_at']
    search_fields = ['user__mobile', 'user__name']
    inlines = [CartItemInline]


class BookingItemInline(admin.TabularInline):
    model = BookingItem
    extra = 0
    raw_id_fields = ['patient']


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'status', 'payment_status', 'final_amount', 'partner_booking_id', 'created_at']
    list_filter = ['payment_status', 'status']
    search_fields = ['id', 'partner_booking_id', 'razorpay_order_id', 'razorpay_payment_id', 'user__mobile']
    readonly_fields = ['created_at', 'updated_at', 'paid_at']
    raw_id_fields = ['user', 'address']
    inlines = [BookingItemInline]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ['event_id', 'created_at']
    search_fields = ['event_id']


@admin.register(PartnerRetry)
class PartnerRetryAdmin(admin.ModelAdmin):
    list_display = ['booking', 'attempts', 'max_attempts', 'next_retry_at', 'last_error']
    raw_id_fields = ['booking']
