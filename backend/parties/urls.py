from django.urls import path
from .views import (
    profile, profile_wallet,
    address_list_create, address_detail,
    patient_list_create, patient_detail,
    admin_wallet_adjust, admin_wallet_ledger, admin_referral_stats,
)

urlpatterns = [
    # Profile endpoints
    path('profile/', profile, name='profile'),
    path('profile/wallet/', profile_wallet, name='profile-wallet'),
    path('profile/addresses/', address_list_create, name='address-list-create'),
    path('profile/addresses/<int:pk>/', address_detail, name='address-detail'),
    path('profile/patients/', patient_list_create, name='patient-list-create'),
    path('profile/patients/<int:pk>/', patient_detail, name='patient-detail'),

    # Super-admin wallets and referrals
    path('admin/wallets/adjust/', admin_wallet_adjust, name='admin-wallet-adjust'),
    path('admin/wallets/ledger/', admin_wallet_ledger, name='admin-wallet-ledger'),
    path('admin/referrals/stats/', admin_referral_stats, name='admin-referral-stats'),
]
