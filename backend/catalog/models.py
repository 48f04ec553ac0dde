from django.db import models
from decimal import Decimal


class CatalogItem(models.Model):
    """Lab test, profile or package imported from the diagnostics partner"""
    TYPE_CHOICES = [
        ('TEST', 'Test'),
        ('PACKAGE', 'Package'),
        ('PROFILE', 'Profile'),
    ]

    partner_code = models.CharField(max_length=100, unique=True)
    name = models.CharField(max_length=500, db_index=True)
    type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='TEST')
    partner_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    display_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    discounted_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    description = models.TextField(blank=True, null=True)
    parameters = models.TextField(blank=True, null=True)
    sample_type = models.CharField(max_length=200, blank=True, null=True)
    report_time = models.CharField(max_length=200, blank=True, null=True)
    partner_data = models.JSONField(null=True, blank=True)
    is_enabled = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.partner_code})"

    class Meta:
        db_table = 'catalog_items'
        ordering = ['name']


class Category(models.Model):
    """Storefront category grouping catalog items"""
    name = models.CharField(max_length=200, unique=True)
    slug = models.SlugField(max_length=200, unique=True)
    description = models.TextField(blank=True, null=True)
    sort_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'categories'
        verbose_name_plural = 'categories'
        ordering = ['sort_order', 'name']


class CatalogItemCategory(models.Model):
    catalog_item = models.ForeignKey(CatalogItem, on_delete=models.CASCADE, related_name='category_links')
    category = models.ForeignKey(Category, on_delete=models.CASCADE, related_name='item_links')
    sort_order = models.IntegerField(default=0)

    def __str__(self):
        return f"{self.category} - {self.catalog_item}"

    class Meta:
        db_table = 'catalog_item_categories'
        unique_together = [['catalog_item', 'category']]
