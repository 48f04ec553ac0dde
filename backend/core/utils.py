"""Utility functions for audit logging, pagination and system config"""
import logging
import math
import secrets

from django.db import transaction

from .models import AuditLog, SystemConfig

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def create_audit_log(request=None, action=None, entity=None, target_id=None,
                     old_value=None, new_value=None, user=None, is_destructive=False):
    """
    Create an audit log entry

    Args:
        request: Django request object (for admin and IP) - optional if user is provided
        action: Action type (USER_BLOCKED, CONFIG_UPDATED, WALLET_ADJUSTMENT, CREATE, ...)
        entity: Name of the entity being acted upon (User, Wallet, SystemConfig, PromoCode)
        target_id: ID of the target (as string)
        old_value: Dictionary with the state before the change
        new_value: Dictionary with the state after the change
        user: Optional admin override (defaults to request.user if request provided)
        is_destructive: Marks blocking, debits and demotions for review
    """
    try:
        audit_user = None
        if user:
            audit_user = user
        elif request and hasattr(request, 'user'):
            audit_user = request.user

        if not action or not entity or not target_id:
            logger.warning(f"Audit log creation skipped: missing required fields (action={action}, entity={entity}, target_id={target_id})")
            return None

        if audit_user and not audit_user.is_authenticated:
            audit_user = None

        # Savepoint keeps an audit failure from poisoning an outer transaction
        with transaction.atomic():
            return AuditLog.objects.create(
                admin=audit_user,
                admin_name=(audit_user.name or 'Admin') if audit_user else 'System',
                action=action,
                entity=entity,
                target_id=str(target_id),
                old_value=old_value,
                new_value=new_value,
                ip_address=get_client_ip(request) if request else None,
                is_destructive=is_destructive,
            )
    except Exception as e:
        # Don't fail the main operation if audit logging fails
        logger.error(f"Failed to create audit log: {str(e)}")
        return None


def get_config_value(key, default):
    """Read a numeric SystemConfig value, falling back to default"""
    try:
        config = SystemConfig.objects.filter(key=key).first()
        if config and config.value:
            return float(config.value)
    except (TypeError, ValueError):
        logger.warning(f"Config {key} is not numeric, using default {default}")
    return default


def generate_otp():
    """Generate a 6 digit numeric OTP"""
    return str(secrets.randbelow(900000) + 100000)


def parse_pagination(request, default_limit=20):
    """Read page/limit query params, tolerating junk values"""
    try:
        page = int(request.query_params.get('page', 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(request.query_params.get('limit', default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    return max(page, 1), max(limit, 1)


def paginate_queryset(queryset, page, limit):
    """Slice a queryset and build the {page, limit, total, totalPages} block"""
    total = queryset.count()
    offset = (page - 1) * limit
    items = list(queryset[offset:offset + limit])
    pagination = {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': math.ceil(total / limit) if limit else 0,
    }
    return items, pagination
