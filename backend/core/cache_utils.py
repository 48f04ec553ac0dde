"""
Caching utilities
Uses the configured Django cache (Redis in deployment)
"""
from django.core.cache import cache
from functools import wraps
import hashlib
import logging

logger = logging.getLogger(__name__)

# Cache TTLs (in seconds)
DASHBOARD_KPI_CACHE_TTL = 300  # 5 minutes
PHLEBO_CONTACT_CACHE_TTL = 300  # 5 minutes
ACTIVE_ZIPCODES_CACHE_TTL = 600  # 10 minutes


def make_cache_key(prefix, *args, **kwargs):
    """Generate a unique cache key from arguments"""
    key_data = f"{prefix}:{args}:{sorted(kwargs.items())}"
    # Hash it to keep key length reasonable
    key_hash = hashlib.md5(key_data.encode()).hexdigest()
    return f"{prefix}:{key_hash}"


def cached_query(cache_ttl=60, key_prefix="query"):
    """
    Decorator to cache expensive lookups

    Usage:
        @cached_query(cache_ttl=600, key_prefix="active_zipcodes")
        def get_active_zipcodes():
            return partner_call()
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            cache_key = make_cache_key(key_prefix, *args, **kwargs)

            cached_data = cache.get(cache_key)
            if cached_data is not None:
                logger.debug(f"Cache HIT for {key_prefix}: {cache_key}")
                return cached_data

            logger.debug(f"Cache MISS for {key_prefix}: {cache_key}")
            result = func(*args, **kwargs)

            cache.set(cache_key, result, cache_ttl)

            return result
        return wrapper
    return decorator


def get_cached_dashboard_kpis():
    """Get cached dashboard KPIs"""
    cache_key = make_cache_key("dashboard_kpis")
    return cache.get(cache_key), cache_key


def cache_dashboard_kpis(cache_key, data, ttl=DASHBOARD_KPI_CACHE_TTL):
    """Cache dashboard KPIs data"""
    cache.set(cache_key, data, ttl)
    logger.debug(f"Cached dashboard KPIs: {cache_key}")


def get_phlebo_cache_key(booking_id):
    return f"phlebo_contact:{booking_id}"
