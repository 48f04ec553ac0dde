from django.contrib import admin
from .models import CatalogItem, Category, CatalogItemCategory


class CatalogItemCategoryInline(admin.TabularInline):
    model = CatalogItemCategory
    extra = 0
    raw_id_fields = ['catalog_item']


@admin.register(CatalogItem)
class CatalogItemAdmin(admin.ModelAdmin):
    list_display = ['name', 'partner_code', 'type', 'partner_price', 'display_price', 'discounted_price', 'is_enabled']
    list_filter = ['type', 'is_enabled']
    search_fields = ['name', 'partner_code']
    readonly_fields = ['partner_price', 'partner_data', 'created_at', 'updated_at']


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'sort_order', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name']
    prepopulated_fields = {'slug': ('name',)}
    inlines = [CatalogItemCategoryInline]
