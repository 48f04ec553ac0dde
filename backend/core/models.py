from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Storefront and back-office user, identified by mobile number"""
    ROLE_CHOICES = [
        ('USER', 'User'),
        ('MANAGER', 'Manager'),
        ('SUPER_ADMIN', 'Super Admin'),
    ]

    STATUS_CHOICES = [
        ('ACTIVE', 'Active'),
        ('BLOCKED', 'Blocked'),
    ]

    GENDER_CHOICES = [
        ('Male', 'Male'),
        ('Female', 'Female'),
        ('Other', 'Other'),
    ]

    mobile = models.CharField(max_length=15, unique=True, null=True, blank=True)
    name = models.CharField(max_length=255, blank=True, null=True)
    email = models.EmailField(unique=True, null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True, null=True)
    age = models.PositiveIntegerField(null=True, blank=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='USER')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='ACTIVE')
    is_verified = models.BooleanField(default=False)
    referral_code = models.CharField(max_length=20, unique=True, null=True, blank=True)
    referred_by = models.ForeignKey('self', on_delete=models.SET_NULL, null=True, blank=True, related_name='referrals')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'

    def save(self, *args, **kwargs):
        # Empty emails are stored as NULL so the unique constraint only covers real addresses
        if not self.email:
            self.email = None
        super().save(*args, **kwargs)

    @property
    def is_manager(self):
        return self.role in ('MANAGER', 'SUPER_ADMIN')

    @property
    def is_super_admin(self):
        return self.role == 'SUPER_ADMIN'

    def __str__(self):
        return self.name or self.mobile or self.username


class OTPCode(models.Model):
    """One-time password issued for signup, login and password reset"""
    identifier = models.CharField(max_length=50, unique=True)
    code = models.CharField(max_length=6)
    expires_at = models.DateTimeField()
    attempts = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.identifier

    class Meta:
        db_table = 'otp_codes'


class SystemConfig(models.Model):
    """Platform-wide configuration (referral bonuses and similar knobs)"""
    key = models.CharField(max_length=100, unique=True)
    value = models.TextField()
    description = models.TextField(blank=True)
    updated_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='config_updates')
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.key

    class Meta:
        db_table = 'system_config'


class AuditLog(models.Model):
    """Audit log for back-office operations"""
    ACTION_CHOICES = [
        ('USER_BLOCKED', 'User Blocked'),
        ('USER_UNBLOCKED', 'User Unblocked'),
        ('USER_PROMOTED_MANAGER', 'User Promoted to Manager'),
        ('USER_DEMOTED_FROM_MANAGER', 'User Demoted from Manager'),
        ('CONFIG_UPDATED', 'Config Updated'),
        ('WALLET_ADJUSTMENT', 'Wallet Adjustment'),
        ('CREATE', 'Create'),
        ('UPDATE', 'Update'),
        ('DELETE', 'Delete'),
    ]

    admin = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    admin_name = models.CharField(max_length=255, blank=True)
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    entity = models.CharField(max_length=100)
    target_id = models.CharField(max_length=100)
    old_value = models.JSONField(null=True, blank=True)
    new_value = models.JSONField(null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    is_destructive = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='audit_logs_created_1f0b2c_idx'),
            models.Index(fields=['action'], name='audit_logs_action_5c3e8a_idx'),
            models.Index(fields=['entity'], name='audit_logs_entity_9d4f71_idx'),
        ]


class CallbackRequest(models.Model):
    """Public "call me back" request from the storefront"""
    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('CONTACTED', 'Contacted'),
        ('CLOSED', 'Closed'),
    ]

    name = models.CharField(max_length=255)
    mobile = models.CharField(max_length=15)
    city = models.CharField(max_length=100, default='Unspecified')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name} ({self.mobile})"

    class Meta:
        db_table = 'callback_requests'
        ordering = ['-created_at']
