from django.contrib import admin
from .models import Patient, Address, Wallet, WalletLedgerEntry, ReferralReward


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['name', 'relation', 'age', 'gender', 'user', 'created_at']
    list_filter = ['relation', 'gender']
    search_fields = ['name', 'user__mobile', 'user__name']
    ordering = ['name']


@admin.register(Address)
class AddressAdmin(admin.ModelAdmin):
    list_display = ['line1', 'city', 'pincode', 'user', 'created_at']
    list_filter = ['city']
    search_fields = ['line1', 'city', 'pincode', 'user__mobile']
    ordering = ['city']


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ['user', 'balance', 'updated_at']
    search_fields = ['user__name', 'user__mobile', 'user__email']
    readonly_fields = ['balance', 'created_at', 'updated_at']


@admin.register(WalletLedgerEntry)
class WalletLedgerEntryAdmin(admin.ModelAdmin):
    list_display = ['id', 'wallet', 'type', 'amount', 'balance_after', 'reference_type', 'reference_id', 'created_by', 'created_at']
    list_filter = ['type', 'reference_type', 'created_at']
    search_fields = ['wallet__user__name', 'wallet__user__mobile', 'description', 'reference_id']
    readonly_fields = ['created_at']
    ordering = ['-created_at']
    date_hierarchy = 'created_at'


@admin.register(ReferralReward)
class ReferralRewardAdmin(admin.ModelAdmin):
    list_display = ['referrer', 'referee', 'reward_type', 'amount', 'status', 'processed_at', 'created_at']
    list_filter = ['reward_type', 'status']
    search_fields = ['referrer__mobile', 'referee__mobile']
    readonly_fields = ['created_at']
