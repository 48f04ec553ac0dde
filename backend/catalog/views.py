import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from django.db import IntegrityError, transaction
from django.db.models import Prefetch
from django.shortcuts import get_object_or_404

from backend.core.permissions import IsManager
from backend.core.utils import parse_pagination
from backend.partners.healthians import get_client, HealthiansError
from .filters import CatalogItemFilter
from .models import CatalogItem, Category, CatalogItemCategory
from .serializers import (
    CatalogItemSerializer, CatalogItemUpdateSerializer, CategorySerializer,
    CategoryWithItemsSerializer, PublicCategorySerializer, PublicCatalogItemSerializer
)
from .services import sync_catalog, CatalogSyncError
from .utils import slugify_name

logger = logging.getLogger(__name__)


# Public storefront endpoints
@api_view(['GET'])
@permission_classes([AllowAny])
def partner_products(request):
    """Partner products available at a zipcode"""
    zipcode = request.query_params.get('zipcode')
    if not zipcode:
        return Response({'error': 'Missing zipcode'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        data = get_client().get_partner_products(zipcode)
    except HealthiansError as e:
        logger.error(f"Fetching partner products for {zipcode} failed: {e.message}")
        return Response({'error': 'Failed to fetch products'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(data)


@api_view(['GET'])
@permission_classes([AllowAny])
def catalog_items(request):
    """Enabled catalog items, optionally filtered by type/search/category"""
    queryset = CatalogItem.objects.filter(is_enabled=True)
    filterset = CatalogItemFilter(request.query_params, queryset=queryset)
    items = filterset.qs.distinct().order_by('name')
    return Response(PublicCatalogItemSerializer(items, many=True).data)


@api_view(['GET'])
@permission_classes([AllowAny])
def public_categories(request):
    categories = Category.objects.filter(is_active=True).prefetch_related(
        Prefetch('item_links', queryset=CatalogItemCategory.objects.select_related('catalog_item'))
    )
    return Response(PublicCategorySerializer(categories, many=True).data)


# Manager console
@api_view(['GET'])
@permission_classes([IsManager])
def manager_health(request):
    return Response({'ok': True, 'manager': request.user.name or 'Manager', 'role': request.user.role})


@api_view(['POST'])
@permission_classes([IsManager])
def manager_catalog_sync(request):
    """Import partner products for a zipcode into the catalog"""
    zipcode = request.data.get('zipcode')
    if not zipcode:
        return Response({'error': 'zipcode is required for sync'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        total, created, updated = sync_catalog(zipcode)
    except CatalogSyncError as e:
        return Response({'error': e.message, 'raw': e.raw}, status=status.HTTP_400_BAD_REQUEST)
    except HealthiansError as e:
        logger.error(f"Catalog sync failed: {e.message}")
        return Response({'error': 'Failed to sync catalog', 'details': e.message},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response({
        'message': f'Sync complete: {created} created, {updated} updated',
        'total': total,
        'created': created,
        'updated': updated,
    })


@api_view(['GET'])
@permission_classes([IsManager])
def manager_catalog_list(request):
    """All catalog items with type/enabled/search filters"""
    page, limit = parse_pagination(request, default_limit=50)

    queryset = CatalogItem.objects.prefetch_related('category_links__category')
    filterset = CatalogItemFilter(request.query_params, queryset=queryset)
    if not filterset.is_valid():
        return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)

    queryset = filterset.qs.distinct().order_by('name')
    total = queryset.count()
    offset = (page - 1) * limit
    items = queryset[offset:offset + limit]

    return Response({
        'items': CatalogItemSerializer(items, many=True).data,
        'total': total,
        'page': page,
        'limit': limit,
    })


@api_view(['PUT'])
@permission_classes([IsManager])
def manager_catalog_update(request, pk):
    """Partial update of price, discount, visibility and metadata"""
    item = get_object_or_404(CatalogItem, pk=pk)
    serializer = CatalogItemUpdateSerializer(item, data=request.data, partial=True)
    if serializer.is_valid():
        serializer.save()
        logger.info(f"Catalog item {item.partner_code} updated by {request.user.id}: {list(serializer.validated_data)}")
        return Response(CatalogItemSerializer(item).data)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['PUT'])
@permission_classes([IsManager])
def manager_catalog_toggle(request, pk):
    item = get_object_or_404(CatalogItem, pk=pk)
    item.is_enabled = not item.is_enabled
    item.save(update_fields=['is_enabled', 'updated_at'])
    return Response({'id': item.id, 'name': item.name, 'is_enabled': item.is_enabled})


@api_view(['GET', 'POST'])
@permission_classes([IsManager])
def manager_category_list_create(request):
    """List categories with their items or create a new category"""
    if request.method == 'GET':
        categories = Category.objects.prefetch_related(
            Prefetch('item_links', queryset=CatalogItemCategory.objects.select_related('catalog_item'))
        ).order_by('sort_order', 'name')
        return Response(CategoryWithItemsSerializer(categories, many=True).data)

    name = request.data.get('name') or ''
    name = name.strip() if isinstance(name, str) else ''
    if not name:
        return Response({'error': 'Category name is required'}, status=status.HTTP_400_BAD_REQUEST)

    slug = slugify_name(name)
    if Category.objects.filter(name=name).exists() or Category.objects.filter(slug=slug).exists():
        return Response({'error': 'Category with this name already exists'}, status=status.HTTP_409_CONFLICT)

    try:
        category = Category.objects.create(
            name=name,
            slug=slug,
            description=request.data.get('description') or None,
            sort_order=request.data.get('sort_order') or 0,
        )
    except IntegrityError:
        return Response({'error': 'Category with this name already exists'}, status=status.HTTP_409_CONFLICT)

    return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)


@api_view(['PUT', 'DELETE'])
@permission_classes([IsManager])
def manager_category_detail(request, pk):
    """Update or delete a category"""
    category = get_object_or_404(Category, pk=pk)

    if request.method == 'DELETE':
        category.delete()
        return Response({'message': 'Category deleted'})

    data = request.data
    if 'name' in data and data['name']:
        if not isinstance(data['name'], str) or not data['name'].strip():
            return Response({'error': 'Category name must be text'}, status=status.HTTP_400_BAD_REQUEST)
        category.name = data['name'].strip()
        category.slug = slugify_name(category.name)
    if 'description' in data:
        category.description = data['description']
    if 'sort_order' in data:
        category.sort_order = data['sort_order'] or 0
    if 'is_active' in data:
        category.is_active = bool(data['is_active'])

    try:
        category.save()
    except IntegrityError:
        return Response({'error': 'Category with this name already exists'}, status=status.HTTP_409_CONFLICT)
    return Response(CategorySerializer(category).data)


@api_view(['POST', 'DELETE'])
@permission_classes([IsManager])
def manager_category_items(request, pk):
    """Assign items to (POST) or remove items from (DELETE) a category"""
    item_ids = request.data.get('itemIds')
    if not isinstance(item_ids, list) or not item_ids:
        return Response({'error': 'itemIds array is required'}, status=status.HTTP_400_BAD_REQUEST)

    category = get_object_or_404(Category, pk=pk)

    if request.method == 'DELETE':
        deleted, _ = CatalogItemCategory.objects.filter(category=category, catalog_item_id__in=item_ids).delete()
        return Response({'message': f'{deleted} items removed from category'})

    items = CatalogItem.objects.filter(id__in=item_ids)
    with transaction.atomic():
        for item in items:
            CatalogItemCategory.objects.get_or_create(catalog_item=item, category=category)

    return Response({'message': f'{len(items)} items assigned to category "{category.name}"'})
