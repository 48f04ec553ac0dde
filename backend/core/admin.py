from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, OTPCode, SystemConfig, AuditLog, CallbackRequest


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['mobile', 'name', 'email', 'role', 'status', 'is_verified', 'created_at']
    list_filter = ['role', 'status', 'is_verified', 'created_at']
    search_fields = ['mobile', 'name', 'email', 'referral_code']
    ordering = ['-created_at']
    fieldsets = BaseUserAdmin.fieldsets + (
        ('DOCNOW', {'fields': ('mobile', 'name', 'gender', 'age', 'role', 'status',
                               'is_verified', 'referral_code', 'referred_by')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('DOCNOW', {'fields': ('mobile', 'name', 'role')}),
    )
    raw_id_fields = ['referred_by']


@admin.register(OTPCode)
class OTPCodeAdmin(admin.ModelAdmin):
    list_display = ['identifier', 'expires_at', 'attempts', 'updated_at']
    search_fields = ['identifier']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(SystemConfig)
class SystemConfigAdmin(admin.ModelAdmin):
    list_display = ['key', 'value', 'updated_by', 'updated_at']
    search_fields = ['key', 'description']
    ordering = ['key']
    readonly_fields = ['updated_at']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['admin_name', 'action', 'entity', 'target_id', 'is_destructive', 'ip_address', 'created_at']
    list_filter = ['action', 'entity', 'is_destructive', 'created_at']
    search_fields = ['admin_name', 'entity', 'target_id']
    ordering = ['-created_at']
    readonly_fields = ['admin', 'admin_name', 'action', 'entity', 'target_id', 'old_value',
                       'new_value', 'ip_address', 'is_destructive', 'created_at']


@admin.register(CallbackRequest)
class CallbackRequestAdmin(admin.ModelAdmin):
    list_display = ['name', 'mobile', 'city', 'status', 'created_at']
    list_filter = ['status', 'city']
    search_fields = ['name', 'mobile']
