from rest_framework import serializers
from .models import Patient, Address, WalletLedgerEntry


class PatientSerializer(serializers.ModelSerializer):
    age = serializers.IntegerField(min_value=0, max_value=150)

    class Meta:
        model = Patient
        fields = ['id', 'name', 'relation', 'age', 'gender', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class AddressSerializer(serializers.ModelSerializer):
    class Meta:
        model = Address
        fields = ['id', 'line1', 'city', 'pincode', 'lat', 'long', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class WalletLedgerEntrySerializer(serializers.ModelSerializer):
    created_by_name = serializers.CharField(source='created_by.name', read_only=True, default=None)

    class Meta:
        model = WalletLedgerEntry
        fields = [
            'id', 'type', 'amount', 'balance_after', 'description', 'reference_type',
            'reference_id', 'created_by', 'created_by_name', 'created_at'
        ]


class AdminLedgerEntrySerializer(WalletLedgerEntrySerializer):
    """Ledger row with the wallet owner, for the admin ledger view"""
    user = serializers.SerializerMethodField()

    class Meta(WalletLedgerEntrySerializer.Meta):
        fields = WalletLedgerEntrySerializer.Meta.fields + ['user']

    def get_user(self, obj):
        user = obj.wallet.user
        return {'id': user.id, 'name': user.name, 'mobile': user.mobile, 'email': user.email}

