from django.urls import path
from . import views

urlpatterns = [
    # Cart
    path('cart/', views.cart_detail, name='cart-detail'),
    path('cart/items/', views.cart_item_add, name='cart-item-add'),
    path('cart/items/<int:pk>/', views.cart_item_detail, name='cart-item-detail'),

    # Slots
    path('slots/', views.slots, name='slots'),
    path('slots/freeze/', views.slot_freeze, name='slot-freeze'),

    # Payments
    path('payments/initiate/', views.payment_initiate, name='payment-initiate'),
    path('payments/verify/', views.payment_verify, name='payment-verify'),
    path('payments/webhook/', views.payment_webhook, name='payment-webhook'),

    # Bookings
    path('bookings/', views.booking_list, name='booking-list'),
    path('bookings/<str:booking_id>/status/', views.booking_status, name='booking-status'),
    path('bookings/<str:booking_id>/cancel/', views.booking_cancel, name='booking-cancel'),
    path('bookings/<str:booking_id>/reschedule/', views.booking_reschedule, name='booking-reschedule'),
    path('bookings/<str:booking_id>/reschedulable-slots/', views.booking_reschedulable_slots,
         name='booking-reschedulable-slots'),
    path('bookings/<str:booking_id>/phlebo-contact/', views.booking_phlebo_contact, name='booking-phlebo-contact'),

    # Super-admin
    path('admin/orders/', views.admin_orders, name='admin-orders'),
]
