"""
Test suite for Locations module
Tests: Serviceability proxy, cached active zipcodes, pincode geocoding
"""
from unittest.mock import MagicMock, patch

import requests
from django.core.cache import cache
from django.test import TestCase, override_settings
from rest_framework import status

from backend.core.test_utils import AuthenticatedAPIClient
from backend.locations.geocoding import get_geodata_from_pincode
from backend.partners.healthians import HealthiansError


GEOCODE_OK = {
    'status': 'OK',
    'results': [{
        'geometry': {'location': {'lat': 28.63, 'lng': 77.21}},
        'address_components': [
            {'long_name': 'New Delhi', 'types': ['administrative_area_level_2']},
            {'long_name': 'Connaught Place', 'types': ['locality', 'political']},
        ],
        'formatted_address': 'Connaught Place, New Delhi, Delhi 110001, India',
    }],
}


class LocationViewTests(TestCase):
    """Location endpoints are public"""

    def setUp(self):
        cache.clear()
        self.client = AuthenticatedAPIClient()
        self.partner = MagicMock()
        patcher = patch('backend.locations.views.get_client', return_value=self.partner)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_serviceability_requires_all_params(self):
        response = self.client.get('/api/location/serviceability/?lat=28.6&long=77.2')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_serviceability_proxies_partner(self):
        self.partner.check_serviceability.return_value = {'status': True, 'data': {'zone_id': '12'}}
        response = self.client.get('/api/location/serviceability/?lat=28.6&long=77.2&zipcode=110001')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['zone_id'], '12')
        self.partner.check_serviceability.assert_called_once_with('28.6', '77.2', '110001')

    def test_serviceability_partner_failure(self):
        self.partner.check_serviceability.side_effect = HealthiansError('down', 502)
        response = self.client.get('/api/location/serviceability/?lat=28.6&long=77.2&zipcode=110001')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'Failed to check serviceability')

    def test_active_zipcodes_are_cached(self):
        self.partner.get_active_zipcodes.return_value = {'status': True, 'data': ['110001']}
        first = self.client.get('/api/location/active-zipcodes/')
        second = self.client.get('/api/location/active-zipcodes/')
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data, first.data)
        self.assertEqual(self.partner.get_active_zipcodes.call_count, 1)

    def test_geocode_missing_pincode(self):
        response = self.client.get('/api/location/geocode/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('backend.locations.views.get_geodata_from_pincode', return_value=None)
    def test_geocode_not_found(self, mock_geo):
        response = self.client.get('/api/location/geocode/?pincode=000000')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @patch('backend.locations.views.get_geodata_from_pincode',
           return_value={'lat': 28.63, 'long': 77.21, 'city': 'Connaught Place'})
    def test_geocode(self, mock_geo):
        response = self.client.get('/api/location/geocode/?pincode=110001')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['city'], 'Connaught Place')


class GeocodingTests(TestCase):
    """Test the Google geocoding helper"""

    @override_settings(GOOGLE_MAPS_API_KEY='')
    def test_no_key_returns_none(self):
        self.assertIsNone(get_geodata_from_pincode('110001'))

    @override_settings(GOOGLE_MAPS_API_KEY='key')
    @patch('backend.locations.geocoding.requests.get')
    def test_prefers_locality(self, mock_get):
        mock_get.return_value.json.return_value = GEOCODE_OK
        geodata = get_geodata_from_pincode('110001')
        self.assertEqual(geodata, {'lat': 28.63, 'long': 77.21, 'city': 'Connaught Place'})
        self.assertEqual(mock_get.call_args.kwargs['params']['address'], '110001,India')

    @override_settings(GOOGLE_MAPS_API_KEY='key')
    @patch('backend.locations.geocoding.requests.get')
    def test_falls_back_to_district(self, mock_get):
        data = {
            'status': 'OK',
            'results': [{
                'geometry': {'location': {'lat': 1, 'lng': 2}},
                'address_components': [{'long_name': 'Gurgaon', 'types': ['administrative_area_level_2']}],
            }],
        }
        mock_get.return_value.json.return_value = data
        self.assertEqual(get_geodata_from_pincode('122001')['city'], 'Gurgaon')

    @override_settings(GOOGLE_MAPS_API_KEY='key')
    @patch('backend.locations.geocoding.requests.get')
    def test_zero_results(self, mock_get):
        mock_get.return_value.json.return_value = {'status': 'ZERO_RESULTS', 'results': []}
        self.assertIsNone(get_geodata_from_pincode('000000'))

    @override_settings(GOOGLE_MAPS_API_KEY='key')
    @patch('backend.locations.geocoding.requests.get', side_effect=requests.exceptions.Timeout('slow'))
    def test_request_failure(self, mock_get):
        self.assertIsNone(get_geodata_from_pincode('110001'))
