"""
Catalog import from the diagnostics partner.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction

from backend.partners.healthians import get_client
from .models import CatalogItem
from .utils import normalize_type

logger = logging.getLogger(__name__)


class CatalogSyncError(Exception):
    """Partner returned something that is not a product list"""

    def __init__(self, message, raw=None):
        super().__init__(message)
        self.message = message
        self.raw = raw


def _extract_products(response):
    if isinstance(response, dict):
        return response.get('data') or response.get('products') or response
    return response or []


def _to_decimal(value):
    try:
        return Decimal(str(value or '0'))
    except (InvalidOperation, ValueError):
        return Decimal('0.00')


def _normalize_product(product):
    partner_code = product.get('deal_id')
    if not partner_code and product.get('product_type') and product.get('product_type_id'):
        partner_code = f"{product['product_type']}_{product['product_type_id']}"
    if not partner_code:
        partner_code = product.get('id')

    parameters = product.get('parameters')
    if not parameters and product.get('parameter_count') is not None:
        parameters = str(product['parameter_count'])

    return {
        'partner_code': str(partner_code),
        'name': product.get('test_name') or product.get('name') or product.get('deal_name') or 'Unknown',
        'price': _to_decimal(product.get('price') or product.get('mrp')),
        'type': normalize_type(product.get('product_type') or product.get('deal_type')),
        'description': product.get('description'),
        'parameters': parameters,
        'sample_type': product.get('sample_type'),
        'report_time': product.get('report_time') or product.get('report_tat'),
    }


def sync_catalog(zipcode, client=None):
    """
    Upsert partner products into CatalogItem by partner code.

    Existing items get the new partner price and metadata but keep the
    manager's display price. New items are enabled with display price
    equal to the partner price.

    Returns (total, created, updated).
    """
    client = client or get_client()
    response = client.get_partner_products(zipcode)
    products = _extract_products(response)

    if not isinstance(products, list):
        raise CatalogSyncError('Unexpected response format from Healthians', raw=response)

    created = 0
    updated = 0
    with transaction.atomic():
        for product in products:
            data = _normalize_product(product)
            item = CatalogItem.objects.filter(partner_code=data['partner_code']).first()

            if item:
                item.partner_price = data['price']
                item.name = data['name']
                item.type = data['type']
                item.description = data['description'] or item.description
                item.parameters = data['parameters'] or item.parameters
                item.sample_type = data['sample_type'] or item.sample_type
                item.report_time = data['report_time'] or item.report_time
                item.partner_data = product
                item.save()
                updated += 1
            else:
                CatalogItem.objects.create(
                    partner_code=data['partner_code'],
                    name=data['name'],
                    type=data['type'],
                    partner_price=data['price'],
                    display_price=data['price'],
                    description=data['description'],
                    parameters=data['parameters'],
                    sample_type=data['sample_type'],
                    report_time=data['report_time'],
                    partner_data=product,
                    is_enabled=True,
                )
                created += 1

    logger.info(f"Catalog sync for {zipcode}: {len(products)} products, {created} created, {updated} updated")
    return len(products), created, updated
