import django_filters
from django.db.models import Q
from .models import CatalogItem


class CatalogItemFilter(django_filters.FilterSet):
    """Manager catalog listing filters"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    type = django_filters.ChoiceFilter(field_name='type', choices=CatalogItem.TYPE_CHOICES)
    enabled = django_filters.CharFilter(method='filter_enabled', label='Enabled')
    category = django_filters.NumberFilter(field_name='category_links__category_id', lookup_expr='exact')

    class Meta:
        model = CatalogItem
        fields = ['search', 'type', 'enabled', 'category']

    def filter_search(self, queryset, name, value):
        """Case-insensitive match on name or partner code"""
        search = (value or '').strip()
        if not search:
            return queryset
        return queryset.filter(Q(name__icontains=search) | Q(partner_code__icontains=search))

    def filter_enabled(self, queryset, name, value):
        if value is None or value == '':
            return queryset
        return queryset.filter(is_enabled=str(value).lower() == 'true')
