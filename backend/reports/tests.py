"""
Test suite for Reports module
Tests: Dashboard KPIs and caching, revenue trend, high value orders, permissions
"""
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class ReportsTests(TestCase):
    """Test super-admin report endpoints"""

    def setUp(self):
        cache.clear()
        self.admin = TestDataFactory.create_super_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

        self.user = TestDataFactory.create_user(name='Priya')
        TestDataFactory.create_user(name='Rahul')
        TestDataFactory.create_wallet(self.user, Decimal('150.00'))
        TestDataFactory.create_booking(self.user, total_amount=Decimal('2500.00'), status='Order Booked')
        TestDataFactory.create_booking(self.user, total_amount=Decimal('700.00'), status='Report Generated')
        TestDataFactory.create_booking(self.user, total_amount=Decimal('300.00'), status='Cancelled')

    def test_dashboard_stats(self):
        """Test KPI values"""
        response = self.client.get('/api/admin/stats/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['totalRevenue'], 3500.0)
        self.assertEqual(response.data['totalUsers'], 2)
        self.assertEqual(response.data['newUsersToday'], 2)
        self.assertEqual(response.data['totalOrders'], 3)
        self.assertEqual(response.data['ordersToday'], 3)
        self.assertEqual(response.data['pendingReports'], 2)
        self.assertEqual(response.data['totalWalletBalance'], 150.0)
        self.assertEqual(response.data['referralPayoutsThisWeek'], 0.0)

    def test_dashboard_stats_cached(self):
        """Test second request is served from cache"""
        first = self.client.get('/api/admin/stats/')
        self.assertEqual(first['X-Cache'], 'MISS')

        TestDataFactory.create_booking(self.user)
        second = self.client.get('/api/admin/stats/')
        self.assertEqual(second['X-Cache'], 'HIT')
        self.assertEqual(second.data['totalOrders'], 3)

    def test_revenue_trend(self):
        """Test 31 zero-filled days ending today, cancelled bookings excluded"""
        response = self.client.get('/api/admin/stats/revenue/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        chart = response.data['chartData']
        self.assertEqual(len(chart), 31)
        self.assertEqual(chart[-1]['revenue'], 3200.0)
        self.assertEqual(chart[0]['revenue'], 0.0)

    def test_high_value_orders(self):
        """Test only bookings of 2000 or more are listed"""
        response = self.client.get('/api/admin/stats/high-value/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        orders = response.data['orders']
        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0]['totalAmount'], 2500.0)
        self.assertEqual(orders[0]['user'], {'name': 'Priya', 'mobile': self.user.mobile})

    def test_high_value_limit(self):
        """Test at most five orders are returned"""
        for _ in range(6):
            TestDataFactory.create_booking(self.user, total_amount=Decimal('3000.00'))
        response = self.client.get('/api/admin/stats/high-value/')
        self.assertEqual(len(response.data['orders']), 5)

    def test_manager_forbidden(self):
        """Test reports are super-admin only"""
        self.client.authenticate_user(TestDataFactory.create_manager())
        for url in ('/api/admin/stats/', '/api/admin/stats/revenue/', '/api/admin/stats/high-value/'):
            response = self.client.get(url)
            self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_requires_authentication(self):
        """Test anonymous access is rejected"""
        self.client.logout()
        response = self.client.get('/api/admin/stats/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
