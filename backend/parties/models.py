from django.core.validators import MaxValueValidator, MinValueValidator, RegexValidator
from django.db import models
from decimal import Decimal
from backend.core.models import User


class Patient(models.Model):
    """Family member a test can be booked for"""
    RELATION_CHOICES = [
        ('Self', 'Self'),
        ('Spouse', 'Spouse'),
        ('Child', 'Child'),
        ('Parent', 'Parent'),
        ('Grand parent', 'Grand parent'),
        ('Sibling', 'Sibling'),
        ('friend', 'Friend'),
        ('Native', 'Native'),
        ('Neighbour', 'Neighbour'),
        ('Colleague', 'Colleague'),
        ('Others', 'Others'),
    ]

    GENDER_CHOICES = [
        ('Male', 'Male'),
        ('Female', 'Female'),
        ('Other', 'Other'),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='patients')
    name = models.CharField(max_length=255)
    relation = models.CharField(max_length=20, choices=RELATION_CHOICES)
    age = models.PositiveIntegerField(validators=[MinValueValidator(0), MaxValueValidator(150)])
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.relation})"

    class Meta:
        db_table = 'patients'


class Address(models.Model):
    """Sample collection address"""
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='addresses')
    line1 = models.CharField(max_length=500)
    city = models.CharField(max_length=100)
    pincode = models.CharField(max_length=6, validators=[RegexValidator(r'^\d{6}$', 'Pincode must be 6 digits')])
    lat = models.FloatField(null=True, blank=True)
    long = models.FloatField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.line1}, {self.city} - {self.pincode}"

    class Meta:
        db_table = 'addresses'


class Wallet(models.Model):
    """Cash-equivalent wallet, one per user"""
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='wallet')
    balance = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} - {self.balance}"

    class Meta:
        db_table = 'wallets'


class WalletLedgerEntry(models.Model):
    """Wallet movements; amount is signed (debits are negative)"""
    TYPE_CHOICES = [
        ('CREDIT', 'Credit'),
        ('DEBIT', 'Debit'),
    ]

    REFERENCE_TYPE_CHOICES = [
        ('ORDER', 'Order'),
        ('REFUND', 'Refund'),
        ('REFERRAL', 'Referral'),
        ('ADMIN_ADJUSTMENT', 'Admin Adjustment'),
    ]

    wallet = models.ForeignKey(Wallet, on_delete=models.CASCADE, related_name='ledger_entries')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    balance_after = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    description = models.TextField(blank=True)
    reference_type = models.CharField(max_length=20, choices=REFERENCE_TYPE_CHOICES, blank=True, null=True)
    reference_id = models.CharField(max_length=100, blank=True, null=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='wallet_adjustments')
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.wallet.user} - {self.type} - {self.amount}"

    class Meta:
        db_table = 'wallet_ledger'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['reference_type', 'reference_id'], name='wallet_ledg_referen_8a2d4e_idx'),
        ]


class ReferralReward(models.Model):
    """Wallet bonus granted through the referral program"""
    REWARD_TYPE_CHOICES = [
        ('REFEREE_SIGNUP', 'Referee Signup'),
        ('REFERRER_ORDER', 'Referrer First Order'),
    ]

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('PROCESSED', 'Processed'),
    ]

    referrer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='referral_rewards_given')
    referee = models.ForeignKey(User, on_delete=models.CASCADE, related_name='referral_rewards_received')
    reward_type = models.CharField(max_length=20, choices=REWARD_TYPE_CHOICES)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')
    trigger_event = models.CharField(max_length=50, blank=True)
    trigger_entity_id = models.CharField(max_length=100, blank=True, null=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.referrer} -> {self.referee} ({self.reward_type})"

    class Meta:
        db_table = 'referral_rewards'
        unique_together = [['referrer', 'referee', 'reward_type']]
