from rest_framework import serializers
from .models import User, SystemConfig, AuditLog, CallbackRequest


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'mobile', 'name', 'email', 'gender', 'age', 'role', 'status',
                  'is_verified', 'referral_code', 'created_at', 'updated_at']
        read_only_fields = ['role', 'status', 'is_verified', 'referral_code', 'created_at', 'updated_at']


class ProfileSerializer(serializers.ModelSerializer):
    """Profile with the wallet balance attached"""
    wallet = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'mobile', 'name', 'email', 'gender', 'age', 'role',
                  'referral_code', 'created_at', 'wallet']

    def get_wallet(self, obj):
        wallet = getattr(obj, 'wallet', None)
        return {'balance': float(wallet.balance) if wallet else 0.0}


class SystemConfigSerializer(serializers.ModelSerializer):
    updated_by_name = serializers.CharField(source='updated_by.name', read_only=True, default=None)

    class Meta:
        model = SystemConfig
        fields = ['id', 'key', 'value', 'description', 'updated_by', 'updated_by_name', 'updated_at']
        read_only_fields = ['updated_by', 'updated_at']


class AuditLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditLog
        fields = ['id', 'admin', 'admin_name', 'action', 'entity', 'target_id',
                  'old_value', 'new_value', 'ip_address', 'is_destructive', 'created_at']


class CallbackRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = CallbackRequest
        fields = ['id', 'name', 'mobile', 'city', 'status', 'created_at']
        read_only_fields = ['status', 'created_at']
