import uuid

from django.db import models
from decimal import Decimal
from backend.core.models import User
from backend.parties.models import Address, Patient


class Cart(models.Model):
    """Storefront cart, one per user"""
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='cart')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Cart {self.pk} - {self.user}"

    class Meta:
        db_table = 'carts'


class CartItem(models.Model):
    """A test in the cart; no patient means the account holder"""
    cart = models.ForeignKey(Cart, on_delete=models.CASCADE, related_name='items')
    test_code = models.CharField(max_length=100)
    test_name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    mrp = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    patient = models.ForeignKey(Patient, on_delete=models.SET_NULL, null=True, blank=True, related_name='cart_items')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.test_name} ({self.test_code})"

    class Meta:
        db_table = 'cart_items'
        unique_together = [['cart', 'test_code']]


class Booking(models.Model):
    """
    A paid (or being paid) lab test order.

    `status` is the customer-facing label synced from the partner,
    `payment_status` is the checkout state machine.
    """
    PAYMENT_STATUS_CHOICES = [
        ('INITIATED', 'Initiated'),
        ('AUTHORIZED', 'Authorized'),
        ('PAID', 'Paid'),
        ('CONFIRMED', 'Confirmed'),
        ('PARTNER_FAILED', 'Partner Failed'),
        ('FAILED', 'Failed'),
        ('CANCELLED', 'Cancelled'),
        ('EXPIRED', 'Expired'),
        ('REFUNDED', 'Refunded'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='bookings')
    address = models.ForeignKey(Address, on_delete=models.SET_NULL, null=True, blank=True, related_name='bookings')
    status = models.CharField(max_length=50, default='PENDING')
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='INITIATED')
    slot_date = models.CharField(max_length=20, blank=True, default='')
    slot_time = models.CharField(max_length=100, blank=True, default='')
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    wallet_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    final_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    promo_code = models.CharField(max_length=50, null=True, blank=True)
    razorpay_order_id = models.CharField(max_length=100, null=True, blank=True)
    razorpay_payment_id = models.CharField(max_length=100, null=True, blank=True, unique=True)
    partner_booking_id = models.CharField(max_length=100, null=True, blank=True)
    partner_error = models.TextField(null=True, blank=True)
    # Set while one worker is creating the partner booking
    partner_claimed_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Booking {self.pk} ({self.payment_status})"

    class Meta:
        db_table = 'bookings'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['payment_status', 'created_at'], name='bookings_payment_3b7c1e_idx'),
            models.Index(fields=['razorpay_order_id'], name='bookings_razorpa_6a9f02_idx'),
        ]


class BookingItem(models.Model):
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='items')
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='booking_items')
    test_code = models.CharField(max_length=100)
    test_name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)

    def __str__(self):
        return f"{self.test_name} for {self.patient_id}"

    class Meta:
        db_table = 'booking_items'
        ordering = ['id']


class WebhookEvent(models.Model):
    """Processed gateway webhook ids, for deduplication"""
    event_id = models.CharField(max_length=255, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.event_id

    class Meta:
        db_table = 'webhook_events'


class PartnerRetry(models.Model):
    """Pending partner booking retry for a paid booking"""
    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name='partner_retry')
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=3)
    next_retry_at = models.DateTimeField()
    last_error = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Retry {self.booking_id} ({self.attempts}/{self.max_attempts})"

    class Meta:
        db_table = 'partner_retries'
        indexes = [
            models.Index(fields=['next_retry_at'], name='partner_ret_next_re_4e1d9b_idx'),
        ]
