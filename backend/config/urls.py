"""
URL configuration for the DOCNOW backend.

Every app mounts its routes under /api/. The Django admin stays at /admin/.
"""
from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.views.static import serve

admin.site.site_header = "DOCNOW Admin Panel"
admin.site.site_title = "DOCNOW Admin Portal"
admin.site.index_title = "Welcome to DOCNOW Admin Portal"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('backend.core.urls')),
    path('api/', include('backend.locations.urls')),
    path('api/', include('backend.catalog.urls')),
    path('api/', include('backend.parties.urls')),
    path('api/', include('backend.pricing.urls')),
    path('api/', include('backend.orders.urls')),
    path('api/', include('backend.reports.urls')),
    re_path(r'^media/(?P<path>.*)$', serve, {'document_root': settings.MEDIA_ROOT}),
    re_path(r'^static/(?P<path>.*)$', serve, {'document_root': settings.STATIC_ROOT}),
]
