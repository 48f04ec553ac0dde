"""
Healthians diagnostics partner client.

Wraps the partner's REST API (serviceability, products, slots, bookings).
The access token is fetched with Basic auth and cached on the client until
shortly before it expires; every other call carries it as a Bearer token.
"""
import hashlib
import hmac
import json
import logging
import os
import time

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_BUFFER = 60  # seconds

# Partner booking status codes that map to a display label
STATUS_CODE_TO_LABEL = {
    'BS002': 'Order Booked',
    'BS003': 'Sample Collection Scheduled',
    'BS005': 'Sample Collector Assigned',
    'BS006': 'Sample Collected',
    'BS007': 'Report Generated',
    'BS0018': 'Cancelled',
}


class HealthiansError(Exception):
    """Raised when the partner API fails or returns an unusable response"""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def _setting(name, default=''):
    return getattr(settings, name, os.getenv(name, default))


def generate_checksum(data, key):
    """Hex HMAC-SHA256 of data with key"""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hmac.new(key.encode('utf-8'), data, hashlib.sha256).hexdigest()


def retry_with_backoff(fn, retries=3, delay=1.0):
    """
    Call fn, retrying failures with exponential backoff.
    Client errors (4xx other than 429) are raised immediately.
    """
    while True:
        try:
            return fn()
        except Exception as e:
            status_code = getattr(e, 'status_code', None)
            if retries <= 0:
                raise
            if status_code and 400 <= status_code < 500 and status_code != 429:
                raise
            logger.warning(f"Partner call failed ({str(e)}), retrying in {delay}s ({retries} left)")
            time.sleep(delay)
            retries -= 1
            delay *= 2


def normalize_gender(gender):
    """Partner expects M/F"""
    if not gender:
        return 'M'
    return 'F' if str(gender).lower().startswith('f') else 'M'


def mask_phone_number(phone):
    if not phone or len(phone) < 4:
        return '****'
    return '******' + phone[-4:]


class HealthiansClient:
    def __init__(self, base_url=None, partner_name=None, client_id=None, client_secret=None,
                 booking_secret=None, timeout=None):
        base_url = base_url or _setting('HEALTHIANS_BASE_URL', 'https://t25crm.healthians.co.in/api')
        partner_name = partner_name or _setting('HEALTHIANS_PARTNER_NAME', 'docnow')
        self.base_url = f"{base_url.rstrip('/')}/{partner_name}"
        self.client_id = client_id if client_id is not None else _setting('HEALTHIANS_CLIENT_ID')
        self.client_secret = client_secret if client_secret is not None else _setting('HEALTHIANS_CLIENT_SECRET')
        self.booking_secret = booking_secret if booking_secret is not None else _setting('HEALTHIANS_BOOKING_SECRET_KEY')
        self.timeout = timeout or int(_setting('HEALTHIANS_TIMEOUT', 30))

        self.session = requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})

        self.access_token = None
        self.token_expiry = None

    def ensure_authenticated(self):
        """Fetch a new access token unless the cached one is still valid"""
        now = time.time()
        if self.access_token and self.token_expiry and now < self.token_expiry - TOKEN_EXPIRY_BUFFER:
            return self.access_token

        if not self.client_id or not self.client_secret:
            raise HealthiansError('Missing Healthians credentials')

        try:
            response = self.session.get(
                f"{self.base_url}/getAccessToken",
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Healthians auth request failed: {str(e)}")
            raise HealthiansError(f'Healthians auth failed: {str(e)}')

        data = self._parse(response)
        if response.status_code >= 400 or not data.get('access_token'):
            logger.error(f"Healthians auth rejected: {response.status_code} {data}")
            raise HealthiansError('Failed to retrieve access token', response.status_code, data)

        self.access_token = data['access_token']
        self.token_expiry = now + int(data.get('expires_in') or 0)
        logger.info("Healthians access token refreshed")
        return self.access_token

    @staticmethod
    def _parse(response):
        try:
            return response.json()
        except ValueError:
            return {'raw': response.text}

    def _request(self, method, path, payload=None, checksum=False):
        token = self.ensure_authenticated()
        headers = {'Authorization': f'Bearer {token}'}
        body = None
        if payload is not None:
            body = json.dumps(payload)
            if checksum:
                if self.booking_secret:
                    headers['X-Checksum'] = generate_checksum(body, self.booking_secret)
                else:
                    logger.warning(f"HEALTHIANS_BOOKING_SECRET_KEY not set, sending {path} without X-Checksum")

        url = f"{self.base_url}/{path}"
        try:
            response = self.session.request(method, url, data=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Healthians {path} request failed: {str(e)}")
            raise HealthiansError(f'Healthians {path} failed: {str(e)}')

        data = self._parse(response)
        if response.status_code >= 400:
            logger.error(f"Healthians {path} error {response.status_code}: {data}")
            raise HealthiansError(f'Healthians {path} returned {response.status_code}', response.status_code, data)
        return data

    # Location and serviceability

    def check_serviceability(self, lat, long, zipcode):
        return self._request('POST', 'checkServiceabilityByLocation_v2', {
            'lat': str(lat),
            'long': str(long),
            'zipcode': str(zipcode),
            'is_ppmc_booking': 0,
        })

    def get_partner_products(self, zipcode):
        return self._request('POST', 'getPartnerProducts', {'zipcode': str(zipcode)})

    def get_active_zipcodes(self):
        return self._request('GET', 'getActiveZipcodes')

    # Slots

    def get_slots_by_location(self, lat, long, zipcode, zone_id, slot_date, amount, package,
                              get_ppmc_slots=0, has_female_patient=0):
        return self._request('POST', 'getSlotsByLocation', {
            'lat': str(lat),
            'long': str(long),
            'zipcode': str(zipcode),
            'zone_id': str(zone_id),
            'slot_date': slot_date,
            'amount': amount,
            'package': package,
            'get_ppmc_slots': get_ppmc_slots,
            'has_female_patient': has_female_patient,
        })

    def freeze_slot(self, slot_id, vendor_billing_user_id):
        return self._request('POST', 'freezeSlot_v1', {
            'slot_id': str(slot_id),
            'vendor_billing_user_id': str(vendor_billing_user_id),
        })

    # Bookings

    def create_booking(self, payload):
        return self._request('POST', 'createBooking_v3', payload, checksum=True)

    def get_booking_status(self, booking_id):
        return self._request('POST', 'getBookingStatus', {'booking_id': str(booking_id)})

    def cancel_booking(self, booking_id, vendor_billing_user_id, vendor_customer_id, remarks):
        return self._request('POST', 'cancelBooking', {
            'booking_id': str(booking_id),
            'vendor_billing_user_id': str(vendor_billing_user_id),
            'vendor_customer_id': str(vendor_customer_id),
            'remarks': remarks,
        })

    def get_phlebo_mask_number(self, booking_id):
        return self._request('POST', 'getPhleboMaskNumber', {'booking_id': str(booking_id)})

    def reschedule_booking(self, payload):
        return self._request('POST', 'rescheduleBookingByCustomer_v1', payload, checksum=True)


_client = None


def get_client():
    """Process-wide client so the access token is shared"""
    global _client
    if _client is None:
        _client = HealthiansClient()
    return _client
