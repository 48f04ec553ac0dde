"""
Razorpay gateway calls and signature checks.
"""
import hashlib
import hmac
import logging
import os

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

RAZORPAY_API_BASE = 'https://api.razorpay.com/v1'


class PaymentGatewayError(Exception):
    """Gateway unreachable, misconfigured or rejected the call"""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def _setting(name, default=''):
    return getattr(settings, name, os.getenv(name, default))


def get_key_id():
    return _setting('RAZORPAY_KEY_ID')


def _credentials():
    key_id = _setting('RAZORPAY_KEY_ID')
    key_secret = _setting('RAZORPAY_KEY_SECRET')
    if not key_id or not key_secret:
        raise PaymentGatewayError('Razorpay is not configured. Check RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.')
    return key_id, key_secret


def _call(method, path, payload=None):
    url = f"{_setting('RAZORPAY_API_BASE', RAZORPAY_API_BASE).rstrip('/')}/{path}"
    try:
        response = requests.request(method, url, json=payload, auth=_credentials(), timeout=30)
    except requests.exceptions.RequestException as e:
        logger.error(f"Razorpay {path} request failed: {str(e)}")
        raise PaymentGatewayError(f'Razorpay request failed: {str(e)}')

    try:
        data = response.json()
    except ValueError:
        data = {'raw': response.text}

    if response.status_code >= 400:
        error = data.get('error') if isinstance(data, dict) else None
        description = error.get('description') if isinstance(error, dict) else None
        logger.error(f"Razorpay {path} error {response.status_code}: {data}")
        raise PaymentGatewayError(description or f'Razorpay returned {response.status_code}',
                                  response.status_code, data)
    return data


def to_paise(amount):
    return int(round(float(amount) * 100))


def create_order(amount, receipt, notes=None):
    """Create a gateway order for amount (rupees)"""
    return _call('POST', 'orders', {
        'amount': to_paise(amount),
        'currency': 'INR',
        'receipt': str(receipt),
        'notes': notes or {},
    })


def fetch_order(order_id):
    return _call('GET', f'orders/{order_id}')


def _hmac_hex(secret, message):
    if isinstance(message, str):
        message = message.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id, payment_id, signature):
    """Checkout signature is HMAC-SHA256 of 'order_id|payment_id' with the key secret"""
    secret = _setting('RAZORPAY_KEY_SECRET')
    if not secret or not signature:
        return False
    expected = _hmac_hex(secret, f'{order_id}|{payment_id}')
    return hmac.compare_digest(expected, str(signature))


def verify_webhook_signature(raw_body, signature):
    """Webhook signature is HMAC-SHA256 of the raw request body with the webhook secret"""
    secret = _setting('RAZORPAY_WEBHOOK_SECRET')
    if not secret or not signature:
        return False
    expected = _hmac_hex(secret, raw_body)
    return hmac.compare_digest(expected, str(signature))
