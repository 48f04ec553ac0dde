from django.urls import path
from .views import promo_available, promo_validate, admin_promo_list_create, admin_promo_update

urlpatterns = [
    path('promos/available/', promo_available, name='promo-available'),
    path('promos/validate/', promo_validate, name='promo-validate'),
    path('admin/promos/', admin_promo_list_create, name='admin-promo-list-create'),
    path('admin/promos/<int:pk>/', admin_promo_update, name='admin-promo-update'),
]
