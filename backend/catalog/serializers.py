from rest_framework import serializers
from .models import CatalogItem, Category, CatalogItemCategory


class CategoryBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ['id', 'name', 'slug']


class CatalogItemSerializer(serializers.ModelSerializer):
    categories = serializers.SerializerMethodField()

    class Meta:
        model = CatalogItem
        fields = [
            'id', 'partner_code', 'name', 'type', 'partner_price', 'display_price',
            'discounted_price', 'description', 'parameters', 'sample_type', 'report_time',
            'is_enabled', 'categories', 'created_at', 'updated_at'
        ]
        read_only_fields = ['partner_code', 'partner_price', 'created_at', 'updated_at']

    def get_categories(self, obj):
        return [CategoryBriefSerializer(link.category).data for link in obj.category_links.all()]


class CatalogItemUpdateSerializer(serializers.ModelSerializer):
    """Manager edits: pricing, visibility and display metadata"""
    class Meta:
        model = CatalogItem
        fields = [
            'name', 'type', 'display_price', 'discounted_price', 'description',
            'parameters', 'sample_type', 'report_time', 'is_enabled'
        ]

    def validate(self, attrs):
        display_price = attrs.get('display_price', getattr(self.instance, 'display_price', None))
        discounted_price = attrs.get('discounted_price')
        if discounted_price is not None and display_price is not None and discounted_price > display_price:
            raise serializers.ValidationError({'discounted_price': 'Discounted price cannot exceed display price'})
        return attrs


class CategoryItemSerializer(serializers.ModelSerializer):
    id = serializers.IntegerField(source='catalog_item.id', read_only=True)
    name = serializers.CharField(source='catalog_item.name', read_only=True)
    partner_code = serializers.CharField(source='catalog_item.partner_code', read_only=True)
    is_enabled = serializers.BooleanField(source='catalog_item.is_enabled', read_only=True)

    class Meta:
        model = CatalogItemCategory
        fields = ['id', 'name', 'partner_code', 'is_enabled', 'sort_order']


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ['id', 'name', 'slug', 'description', 'sort_order', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['slug', 'created_at', 'updated_at']


class CategoryWithItemsSerializer(CategorySerializer):
    items = serializers.SerializerMethodField()
    itemCount = serializers.SerializerMethodField()
    enabledItemCount = serializers.SerializerMethodField()

    class Meta(CategorySerializer.Meta):
        fields = CategorySerializer.Meta.fields + ['items', 'itemCount', 'enabledItemCount']

    def _links(self, obj):
        return sorted(obj.item_links.all(), key=lambda link: link.sort_order)

    def get_items(self, obj):
        return CategoryItemSerializer(self._links(obj), many=True).data

    def get_itemCount(self, obj):
        return len(obj.item_links.all())

    def get_enabledItemCount(self, obj):
        return sum(1 for link in obj.item_links.all() if link.catalog_item.is_enabled)


class PublicCategorySerializer(CategorySerializer):
    """Active category with its enabled items for the storefront"""
    items = serializers.SerializerMethodField()

    class Meta(CategorySerializer.Meta):
        fields = ['id', 'name', 'slug', 'description', 'sort_order', 'items']

    def get_items(self, obj):
        links = sorted(obj.item_links.all(), key=lambda link: link.sort_order)
        return [
            PublicCatalogItemSerializer(link.catalog_item).data
            for link in links if link.catalog_item.is_enabled
        ]


class PublicCatalogItemSerializer(serializers.ModelSerializer):
    """Storefront view; partner pricing stays internal"""
    class Meta:
        model = CatalogItem
        fields = [
            'id', 'partner_code', 'name', 'type', 'display_price', 'discounted_price',
            'description', 'parameters', 'sample_type', 'report_time'
        ]
