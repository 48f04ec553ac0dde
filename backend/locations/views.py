import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import AllowAny

from backend.core.cache_utils import cached_query, ACTIVE_ZIPCODES_CACHE_TTL
from backend.partners.healthians import get_client, HealthiansError
from .geocoding import get_geodata_from_pincode

logger = logging.getLogger(__name__)


@cached_query(cache_ttl=ACTIVE_ZIPCODES_CACHE_TTL, key_prefix='active_zipcodes')
def get_active_zipcodes():
    return get_client().get_active_zipcodes()


@api_view(['GET'])
@permission_classes([AllowAny])
def serviceability(request):
    """Check whether the partner collects samples at a location"""
    lat = request.query_params.get('lat')
    long = request.query_params.get('long')
    zipcode = request.query_params.get('zipcode')

    if not lat or not long or not zipcode:
        return Response({'error': 'Missing lat, long, or zipcode'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        data = get_client().check_serviceability(lat, long, zipcode)
    except HealthiansError as e:
        logger.error(f"Serviceability check failed for {zipcode}: {e.message}")
        return Response({'error': 'Failed to check serviceability'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(data)


@api_view(['GET'])
@permission_classes([AllowAny])
def active_zipcodes(request):
    try:
        data = get_active_zipcodes()
    except HealthiansError as e:
        logger.error(f"Fetching active zipcodes failed: {e.message}")
        return Response({'error': 'Failed to fetch active zipcodes'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(data)


@api_view(['GET'])
@permission_classes([AllowAny])
def geocode(request):
    """Resolve a pincode to lat/long/city"""
    pincode = request.query_params.get('pincode')
    if not pincode:
        return Response({'error': 'Missing Pincode'}, status=status.HTTP_400_BAD_REQUEST)

    geodata = get_geodata_from_pincode(pincode)
    if not geodata:
        return Response({'error': 'Location not found for this pincode'}, status=status.HTTP_404_NOT_FOUND)
    return Response(geodata)
