from django.urls import path
from .views import (
    CustomTokenRefreshView, user_me,
    signup_send_otp, signup_verify,
    login_password, login_send_otp, login_verify_otp,
    forgot_password_send_otp, forgot_password_verify_reset,
    callback_request,
    admin_health, admin_user_list, admin_user_detail, admin_user_status, admin_user_role,
    admin_config_list, admin_config_update, admin_audit_logs,
)

urlpatterns = [
    # Auth endpoints
    path('auth/signup/send-otp/', signup_send_otp, name='signup-send-otp'),
    path('auth/signup/verify/', signup_verify, name='signup-verify'),
    path('auth/login/password/', login_password, name='login-password'),
    path('auth/login/send-otp/', login_send_otp, name='login-send-otp'),
    path('auth/login/verify-otp/', login_verify_otp, name='login-verify-otp'),
    path('auth/forgot-password/send-otp/', forgot_password_send_otp, name='forgot-password-send-otp'),
    path('auth/forgot-password/verify-reset/', forgot_password_verify_reset, name='forgot-password-verify-reset'),
    path('auth/token/refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/me/', user_me, name='user-me'),

    # Public callback form
    path('callback/request/', callback_request, name='callback-request'),

    # Super-admin: users, config, audit
    path('admin/health/', admin_health, name='admin-health'),
    path('admin/users/', admin_user_list, name='admin-user-list'),
    path('admin/users/<int:pk>/', admin_user_detail, name='admin-user-detail'),
    path('admin/users/<int:pk>/status/', admin_user_status, name='admin-user-status'),
    path('admin/users/<int:pk>/role/', admin_user_role, name='admin-user-role'),
    path('admin/config/', admin_config_list, name='admin-config-list'),
    path('admin/config/<str:key>/', admin_config_update, name='admin-config-update'),
    path('admin/audit-logs/', admin_audit_logs, name='admin-audit-logs'),
]
