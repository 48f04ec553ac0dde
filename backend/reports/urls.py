from django.urls import path
from . import views

urlpatterns = [
    path('admin/stats/', views.dashboard_stats, name='admin-stats'),
    path('admin/stats/revenue/', views.revenue_trend, name='admin-stats-revenue'),
    path('admin/stats/high-value/', views.high_value_orders, name='admin-stats-high-value'),
]
