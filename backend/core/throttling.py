"""
Per-user request throttles for the payment and booking endpoints.
Rates live in REST_FRAMEWORK['DEFAULT_THROTTLE_RATES'].
"""
import math

from rest_framework.exceptions import Throttled
from rest_framework.throttling import UserRateThrottle
from rest_framework.views import exception_handler

DEFAULT_THROTTLE_MESSAGE = 'Too many requests. Please wait before trying again.'


class PaymentInitiateThrottle(UserRateThrottle):
    scope = 'payment_initiate'


class PaymentVerifyThrottle(UserRateThrottle):
    scope = 'payment_verify'


class BookingStatusThrottle(UserRateThrottle):
    scope = 'booking_status'
    message = 'Too many status check requests'


class BookingCancelThrottle(UserRateThrottle):
    scope = 'booking_cancel'
    message = 'Too many cancellation attempts. Please wait a minute.'


class BookingRescheduleThrottle(UserRateThrottle):
    scope = 'booking_reschedule'
    message = 'Too many reschedule attempts. Please wait a minute.'


def api_exception_handler(exc, context):
    """DRF's handler, with throttled responses reshaped to {error, retryAfter}"""
    response = exception_handler(exc, context)
    if response is None or not isinstance(exc, Throttled):
        return response

    view = context.get('view')
    throttles = view.get_throttles() if view is not None else []
    message = next(
        (getattr(throttle, 'message', None) for throttle in throttles if getattr(throttle, 'message', None)),
        DEFAULT_THROTTLE_MESSAGE
    )
    retry_after = max(1, math.ceil(exc.wait or 1))
    response.data = {'error': message, 'retryAfter': retry_after}
    response['Retry-After'] = str(retry_after)
    return response
