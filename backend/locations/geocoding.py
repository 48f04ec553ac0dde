"""
Pincode geocoding through the Google Maps Geocoding API.
"""
import os
import requests
import logging
from django.conf import settings

logger = logging.getLogger(__name__)

GEOCODE_URL = 'https://maps.googleapis.com/maps/api/geocode/json'


def _get_api_key():
    return getattr(settings, 'GOOGLE_MAPS_API_KEY', os.getenv('GOOGLE_MAPS_API_KEY', ''))


def _extract_city(result):
    city = ''
    for component in result.get('address_components') or []:
        types = component.get('types') or []
        if 'locality' in types:
            city = component.get('long_name', '')
            break
        if 'administrative_area_level_2' in types:
            city = component.get('long_name', '')

    if not city and result.get('formatted_address'):
        parts = [p.strip() for p in result['formatted_address'].split(',')]
        city = (parts[1] if len(parts) > 1 else parts[0]) or 'Unknown'
    return city


def get_geodata_from_pincode(pincode):
    """
    Resolve an Indian pincode to coordinates and a city name.

    Returns {'lat', 'long', 'city'} or None when the key is missing,
    the lookup fails or nothing matches.
    """
    api_key = _get_api_key()
    if not api_key:
        logger.error("GOOGLE_MAPS_API_KEY is not configured, skipping geocoding")
        return None

    try:
        response = requests.get(
            GEOCODE_URL,
            params={'address': f'{pincode},India', 'key': api_key},
            timeout=10
        )
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"Geocoding request failed for pincode {pincode}: {str(e)}")
        return None
    except ValueError:
        logger.error(f"Geocoding returned invalid JSON for pincode {pincode}")
        return None

    results = data.get('results') or []
    if data.get('status') != 'OK' or not results:
        logger.warning(f"Geocoding returned no results for pincode {pincode} (status={data.get('status')})")
        return None

    result = results[0]
    location = result.get('geometry', {}).get('location', {})
    return {
        'lat': location.get('lat'),
        'long': location.get('lng'),
        'city': _extract_city(result),
    }
