from django.urls import path
from .views import (
    partner_products, catalog_items, public_categories,
    manager_health, manager_catalog_sync, manager_catalog_list,
    manager_catalog_update, manager_catalog_toggle,
    manager_category_list_create, manager_category_detail, manager_category_items,
)

urlpatterns = [
    # Storefront catalog
    path('catalog/products/', partner_products, name='catalog-products'),
    path('catalog/items/', catalog_items, name='catalog-items'),
    path('catalog/categories/', public_categories, name='catalog-categories'),

    # Manager console
    path('manager/health/', manager_health, name='manager-health'),
    path('manager/catalog/', manager_catalog_list, name='manager-catalog-list'),
    path('manager/catalog/sync/', manager_catalog_sync, name='manager-catalog-sync'),
    path('manager/catalog/<int:pk>/', manager_catalog_update, name='manager-catalog-update'),
    path('manager/catalog/<int:pk>/toggle/', manager_catalog_toggle, name='manager-catalog-toggle'),
    path('manager/categories/', manager_category_list_create, name='manager-category-list-create'),
    path('manager/categories/<int:pk>/', manager_category_detail, name='manager-category-detail'),
    path('manager/categories/<int:pk>/items/', manager_category_items, name='manager-category-items'),
]
