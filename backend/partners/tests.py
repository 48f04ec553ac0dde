"""
Test suite for the Healthians partner client
Tests: Token caching, bearer calls, checksums, error mapping, retry/backoff and helpers
"""
import json
import time
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase

from backend.partners.healthians import (
    HealthiansClient, HealthiansError, STATUS_CODE_TO_LABEL, generate_checksum, mask_phone_number,
    normalize_gender, retry_with_backoff
)


def _response(status_code=200, data=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = data if data is not None else {}
    response.text = json.dumps(data)
    return response


class HelperTests(TestCase):

    def test_generate_checksum(self):
        checksum = generate_checksum('{"a": 1}', 'secret')
        self.assertEqual(len(checksum), 64)
        self.assertEqual(checksum, generate_checksum(b'{"a": 1}', 'secret'))
        self.assertNotEqual(checksum, generate_checksum('{"a": 1}', 'other'))

    def test_normalize_gender(self):
        self.assertEqual(normalize_gender('Female'), 'F')
        self.assertEqual(normalize_gender('f'), 'F')
        self.assertEqual(normalize_gender('Male'), 'M')
        self.assertEqual(normalize_gender('Other'), 'M')
        self.assertEqual(normalize_gender(''), 'M')
        self.assertEqual(normalize_gender(None), 'M')

    def test_mask_phone_number(self):
        self.assertEqual(mask_phone_number('9876543210'), '******3210')
        self.assertEqual(mask_phone_number('123'), '****')
        self.assertEqual(mask_phone_number(None), '****')

    def test_status_labels(self):
        self.assertEqual(STATUS_CODE_TO_LABEL['BS002'], 'Order Booked')
        self.assertEqual(STATUS_CODE_TO_LABEL['BS0018'], 'Cancelled')


@patch('backend.partners.healthians.time.sleep')
class RetryWithBackoffTests(TestCase):

    def test_retries_then_succeeds(self, mock_sleep):
        fn = MagicMock(side_effect=[HealthiansError('boom', 500), HealthiansError('boom', 503), 'ok'])
        self.assertEqual(retry_with_backoff(fn, retries=3, delay=1.0), 'ok')
        self.assertEqual(fn.call_count, 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [1.0, 2.0])

    def test_client_errors_are_not_retried(self, mock_sleep):
        fn = MagicMock(side_effect=HealthiansError('bad request', 400))
        with self.assertRaises(HealthiansError):
            retry_with_backoff(fn)
        self.assertEqual(fn.call_count, 1)
        mock_sleep.assert_not_called()

    def test_rate_limited_is_retried(self, mock_sleep):
        fn = MagicMock(side_effect=[HealthiansError('slow down', 429), 'ok'])
        self.assertEqual(retry_with_backoff(fn), 'ok')

    def test_gives_up_after_retries(self, mock_sleep):
        fn = MagicMock(side_effect=HealthiansError('down', 502))
        with self.assertRaises(HealthiansError):
            retry_with_backoff(fn, retries=2)
        self.assertEqual(fn.call_count, 3)


class HealthiansClientTests(TestCase):
    """Test the HTTP client against a mocked session"""

    def setUp(self):
        self.client = HealthiansClient(
            base_url='https://partner.test/api/',
            partner_name='docnow',
            client_id='id',
            client_secret='secret',
            booking_secret='booking-key',
        )
        self.client.session = MagicMock()
        self.client.session.get.return_value = _response(200, {'access_token': 'tok', 'expires_in': 3600})

    def test_base_url(self):
        self.assertEqual(self.client.base_url, 'https://partner.test/api/docnow')

    def test_missing_credentials(self):
        client = HealthiansClient(base_url='https://partner.test/api', client_id='', client_secret='')
        with self.assertRaises(HealthiansError):
            client.ensure_authenticated()

    def test_token_is_cached(self):
        self.client.session.request.return_value = _response(200, {'status': True})
        self.client.get_active_zipcodes()
        self.client.get_active_zipcodes()

        self.assertEqual(self.client.session.get.call_count, 1)
        _, kwargs = self.client.session.get.call_args
        self.assertEqual(kwargs['auth'], ('id', 'secret'))
        _, kwargs = self.client.session.request.call_args
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer tok')

    def test_token_refreshed_near_expiry(self):
        self.client.access_token = 'old'
        self.client.token_expiry = time.time() + 30
        self.assertEqual(self.client.ensure_authenticated(), 'tok')

    def test_auth_failure(self):
        self.client.session.get.return_value = _response(401, {'message': 'nope'})
        with self.assertRaises(HealthiansError) as ctx:
            self.client.ensure_authenticated()
        self.assertEqual(ctx.exception.status_code, 401)

    def test_serviceability_payload(self):
        self.client.session.request.return_value = _response(200, {'status': True})
        self.client.check_serviceability(28.6, 77.2, 110001)

        args, kwargs = self.client.session.request.call_args
        self.assertEqual(args, ('POST', 'https://partner.test/api/docnow/checkServiceabilityByLocation_v2'))
        body = json.loads(kwargs['data'])
        self.assertEqual(body, {'lat': '28.6', 'long': '77.2', 'zipcode': '110001', 'is_ppmc_booking': 0})

    def test_create_booking_sends_checksum(self):
        self.client.session.request.return_value = _response(200, {'status': True, 'booking_id': 'HB1'})
        self.client.create_booking({'customer': []})

        _, kwargs = self.client.session.request.call_args
        self.assertEqual(kwargs['headers']['X-Checksum'], generate_checksum(kwargs['data'], 'booking-key'))

    def test_create_booking_without_secret_skips_checksum(self):
        self.client.booking_secret = ''
        self.client.session.request.return_value = _response(200, {'status': True})
        self.client.create_booking({'customer': []})

        _, kwargs = self.client.session.request.call_args
        self.assertNotIn('X-Checksum', kwargs['headers'])

    def test_http_error_raises_with_payload(self):
        self.client.session.request.return_value = _response(500, {'message': 'down'})
        with self.assertRaises(HealthiansError) as ctx:
            self.client.get_booking_status('HB1')
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.payload, {'message': 'down'})

    def test_network_error_raises(self):
        self.client.session.request.side_effect = requests.exceptions.ConnectionError('unreachable')
        with self.assertRaises(HealthiansError):
            self.client.freeze_slot('S1', 'U1')
