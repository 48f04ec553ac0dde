"""
Test suite for Catalog module
Tests: Partner sync upserts, manager catalog filters/updates, categories and assignments, helpers
"""
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

from django.core.management import call_command
from django.test import TestCase
from rest_framework import status

from backend.catalog.models import CatalogItem, Category, CatalogItemCategory
from backend.catalog.services import sync_catalog, CatalogSyncError
from backend.catalog.utils import normalize_type, slugify_name
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


PARTNER_PRODUCTS = {
    'status': True,
    'data': [
        {'deal_id': 'HT101', 'test_name': 'Complete Blood Count', 'price': '350', 'product_type': 'test'},
        {'deal_id': 'HT202', 'test_name': 'Full Body Checkup', 'price': '1999', 'product_type': 'package',
         'parameter_count': 72},
    ],
}


class CatalogUtilsTests(TestCase):

    def test_normalize_type(self):
        self.assertEqual(normalize_type('package'), 'PACKAGE')
        self.assertEqual(normalize_type('Combo'), 'PACKAGE')
        self.assertEqual(normalize_type('profile'), 'PROFILE')
        self.assertEqual(normalize_type('test'), 'TEST')
        self.assertEqual(normalize_type(None), 'TEST')

    def test_slugify_name(self):
        self.assertEqual(slugify_name('Full Body Checkup'), 'full-body-checkup')
        self.assertEqual(slugify_name('  Vitamins & Minerals!'), 'vitamins-minerals')


class CatalogSyncTests(TestCase):
    """Test upserting partner products"""

    def setUp(self):
        self.partner = MagicMock()
        self.partner.get_partner_products.return_value = PARTNER_PRODUCTS

    def test_creates_new_items(self):
        total, created, updated = sync_catalog('110001', client=self.partner)
        self.assertEqual((total, created, updated), (2, 2, 0))

        package = CatalogItem.objects.get(partner_code='HT202')
        self.assertEqual(package.type, 'PACKAGE')
        self.assertEqual(package.display_price, Decimal('1999'))
        self.assertEqual(package.parameters, '72')
        self.assertTrue(package.is_enabled)

    def test_update_keeps_display_price(self):
        TestDataFactory.create_catalog_item(
            partner_code='HT101', partner_price=Decimal('300'), display_price=Decimal('299')
        )
        total, created, updated = sync_catalog('110001', client=self.partner)
        self.assertEqual((created, updated), (1, 1))

        item = CatalogItem.objects.get(partner_code='HT101')
        self.assertEqual(item.partner_price, Decimal('350'))
        self.assertEqual(item.display_price, Decimal('299'))
        self.assertEqual(item.name, 'Complete Blood Count')

    def test_non_list_response(self):
        self.partner.get_partner_products.return_value = {'status': False, 'data': {'message': 'bad zip'}}
        with self.assertRaises(CatalogSyncError):
            sync_catalog('000000', client=self.partner)

    def test_sync_command(self):
        with patch('backend.catalog.services.get_client', return_value=self.partner):
            out = StringIO()
            call_command('sync_catalog', '110001', stdout=out)
        self.assertIn('2 created', out.getvalue())
        self.assertEqual(CatalogItem.objects.count(), 2)


class PublicCatalogTests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_items_only_enabled(self):
        TestDataFactory.create_catalog_item(name='Visible')
        TestDataFactory.create_catalog_item(name='Hidden', is_enabled=False)
        response = self.client.get('/api/catalog/items/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([i['name'] for i in response.data], ['Visible'])
        self.assertNotIn('partner_price', response.data[0])

    def test_categories_show_enabled_items(self):
        category = TestDataFactory.create_category(name='Diabetes')
        TestDataFactory.create_category(name='Archived', is_active=False)
        enabled = TestDataFactory.create_catalog_item(name='HbA1c')
        disabled = TestDataFactory.create_catalog_item(name='Old Sugar Test', is_enabled=False)
        CatalogItemCategory.objects.create(catalog_item=enabled, category=category)
        CatalogItemCategory.objects.create(catalog_item=disabled, category=category)

        response = self.client.get('/api/catalog/categories/')
        self.assertEqual(len(response.data), 1)
        self.assertEqual([i['name'] for i in response.data[0]['items']], ['HbA1c'])

    def test_partner_products_requires_zipcode(self):
        response = self.client.get('/api/catalog/products/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ManagerCatalogTests(TestCase):
    """Test the manager catalog console"""

    def setUp(self):
        self.manager = TestDataFactory.create_manager()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.manager)
        self.cbc = TestDataFactory.create_catalog_item(partner_code='HT101', name='Complete Blood Count')
        self.package = TestDataFactory.create_catalog_item(
            partner_code='HT202', name='Full Body Checkup', type='PACKAGE', is_enabled=False
        )

    def test_regular_user_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/manager/catalog/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_super_admin_allowed(self):
        self.client.authenticate_user(TestDataFactory.create_super_admin())
        response = self.client.get('/api/manager/health/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], 'SUPER_ADMIN')

    def test_list_filters(self):
        response = self.client.get('/api/manager/catalog/?type=PACKAGE')
        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['limit'], 50)

        response = self.client.get('/api/manager/catalog/?enabled=true')
        self.assertEqual([i['partner_code'] for i in response.data['items']], ['HT101'])

        response = self.client.get('/api/manager/catalog/?search=body')
        self.assertEqual([i['partner_code'] for i in response.data['items']], ['HT202'])

    def test_update_item(self):
        response = self.client.put(f'/api/manager/catalog/{self.cbc.id}/', {
            'display_price': '450.00', 'discounted_price': '399.00'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.cbc.refresh_from_db()
        self.assertEqual(self.cbc.discounted_price, Decimal('399.00'))

    def test_discount_above_display_price_rejected(self):
        response = self.client.put(f'/api/manager/catalog/{self.cbc.id}/', {
            'display_price': '300.00', 'discounted_price': '399.00'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_toggle(self):
        response = self.client.put(f'/api/manager/catalog/{self.package.id}/toggle/')
        self.assertTrue(response.data['is_enabled'])

    def test_sync_requires_zipcode(self):
        response = self.client.post('/api/manager/catalog/sync/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_sync(self):
        partner = MagicMock()
        partner.get_partner_products.return_value = PARTNER_PRODUCTS
        with patch('backend.catalog.services.get_client', return_value=partner):
            response = self.client.post('/api/manager/catalog/sync/', {'zipcode': '110001'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual((response.data['created'], response.data['updated']), (0, 2))

    def test_create_category(self):
        response = self.client.post('/api/manager/categories/', {'name': 'Heart Health'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['slug'], 'heart-health')

        duplicate = self.client.post('/api/manager/categories/', {'name': 'Heart Health'}, format='json')
        self.assertEqual(duplicate.status_code, status.HTTP_409_CONFLICT)

    def test_create_category_requires_name(self):
        response = self.client.post('/api/manager/categories/', {'name': '  '}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_category_assignments(self):
        category = TestDataFactory.create_category(name='Popular')
        url = f'/api/manager/categories/{category.id}/items/'

        response = self.client.post(url, {'itemIds': [self.cbc.id, self.package.id]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        # Upsert: assigning again does not duplicate
        self.client.post(url, {'itemIds': [self.cbc.id]}, format='json')
        self.assertEqual(CatalogItemCategory.objects.filter(category=category).count(), 2)

        listing = self.client.get('/api/manager/categories/')
        self.assertEqual(listing.data[0]['itemCount'], 2)
        self.assertEqual(listing.data[0]['enabledItemCount'], 1)

        self.client.delete(url, {'itemIds': [self.package.id]}, format='json')
        self.assertEqual(CatalogItemCategory.objects.filter(category=category).count(), 1)

    def test_category_name_must_be_text(self):
        response = self.client.post('/api/manager/categories/', {'name': 42}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        category = TestDataFactory.create_category(name='Popular')
        response = self.client.put(f'/api/manager/categories/{category.id}/', {'name': ['Heart']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        category.refresh_from_db()
        self.assertEqual(category.name, 'Popular')

    def test_category_items_requires_list(self):
        category = TestDataFactory.create_category()
        response = self.client.post(f'/api/manager/categories/{category.id}/items/', {'itemIds': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_category_not_found(self):
        response = self.client.put('/api/manager/categories/99999/', {'name': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_category(self):
        category = TestDataFactory.create_category()
        response = self.client.delete(f'/api/manager/categories/{category.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Category.objects.filter(pk=category.id).exists())
