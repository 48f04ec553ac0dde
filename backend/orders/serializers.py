from rest_framework import serializers
from backend.parties.models import Patient
from .models import Cart, CartItem, Booking, BookingItem


class PatientBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = Patient
        fields = ['id', 'name', 'relation']


class CartItemSerializer(serializers.ModelSerializer):
    patient = PatientBriefSerializer(read_only=True)

    class Meta:
        model = CartItem
        fields = ['id', 'test_code', 'test_name', 'price', 'mrp', 'patient', 'created_at']


class CartSerializer(serializers.ModelSerializer):
    items = serializers.SerializerMethodField()

    def get_items(self, obj):
        items = obj.items.select_related('patient').order_by('-created_at')
        return CartItemSerializer(items, many=True).data

    class Meta:
        model = Cart
        fields = ['id', 'items', 'created_at', 'updated_at']


class BookingItemSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    patient_relation = serializers.CharField(source='patient.relation', read_only=True)

    class Meta:
        model = BookingItem
        fields = ['id', 'test_code', 'test_name', 'price', 'patient', 'patient_name', 'patient_relation']


class BookingSerializer(serializers.ModelSerializer):
    """Full booking, used by the admin console"""
    items = BookingItemSerializer(many=True, read_only=True)
    address_text = serializers.SerializerMethodField()

    def get_address_text(self, obj):
        return str(obj.address) if obj.address else None

    class Meta:
        model = Booking
        fields = [
            'id', 'status', 'payment_status', 'slot_date', 'slot_time', 'total_amount',
            'discount_amount', 'wallet_amount', 'final_amount', 'promo_code', 'razorpay_order_id',
            'razorpay_payment_id', 'partner_booking_id', 'partner_error', 'paid_at', 'address',
            'address_text', 'items', 'created_at', 'updated_at'
        ]
