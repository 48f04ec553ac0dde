from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission


def _check_not_blocked(user):
    if user.status == 'BLOCKED':
        raise PermissionDenied('Forbidden: Account is blocked')


class IsSuperAdmin(BasePermission):
    """Full platform administration (users, wallets, promos, audit)"""
    message = 'Forbidden: Super Admin access required'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        _check_not_blocked(user)
        return user.role == 'SUPER_ADMIN'


class IsManager(BasePermission):
    """Catalog and pricing console; SUPER_ADMIN inherits it"""
    message = 'Forbidden: Manager access required'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        _check_not_blocked(user)
        return user.role in ('MANAGER', 'SUPER_ADMIN')
