import django.db.models.deletion
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='CatalogItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('partner_code', models.CharField(max_length=100, unique=True)),
                ('name', models.CharField(db_index=True, max_length=500)),
                ('type', models.CharField(choices=[('TEST', 'Test'), ('PACKAGE', 'Package'), ('PROFILE', 'Profile')], default='TEST', max_length=20)),
                ('partner_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('display_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('discounted_price', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('description', models.TextField(blank=True, null=True)),
                ('parameters', models.TextField(blank=True, null=True)),
                ('sample_type', models.CharField(blank=True, max_length=200, null=True)),
                ('report_time', models.CharField(blank=True, max_length=200, null=True)),
                ('partner_data', models.JSONField(blank=True, null=True)),
                ('is_enabled', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'catalog_items',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200, unique=True)),
                ('slug', models.SlugField(max_length=200, unique=True)),
                ('description', models.TextField(blank=True, null=True)),
                ('sort_order', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name_plural': 'categories',
                'db_table': 'categories',
                'ordering': ['sort_order', 'name'],
            },
        ),
        migrations.CreateModel(
            name='CatalogItemCategory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sort_order', models.IntegerField(default=0)),
                ('catalog_item', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='category_links', to='catalog.catalogitem')),
                ('category', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='item_links', to='catalog.category')),
            ],
            options={
                'db_table': 'catalog_item_categories',
                'unique_together': {('catalog_item', 'category')},
            },
        ),
    ]
