from django.core.management.base import BaseCommand, CommandError
from backend.catalog.services import sync_catalog, CatalogSyncError
from backend.partners.healthians import HealthiansError


class Command(BaseCommand):
    help = 'Import partner products for a zipcode into the catalog (keeps manager display prices)'

    def add_arguments(self, parser):
        parser.add_argument(
            'zipcode',
            help='Zipcode to fetch partner products for',
        )

    def handle(self, *args, **options):
        zipcode = options['zipcode']
        self.stdout.write(f"Syncing catalog for zipcode {zipcode}...")

        try:
            total, created, updated = sync_catalog(zipcode)
        except CatalogSyncError as e:
            raise CommandError(f"{e.message}: {e.raw}")
        except HealthiansError as e:
            raise CommandError(f"Partner error: {e.message}")

        self.stdout.write(self.style.SUCCESS(
            f"Sync complete: {total} products, {created} created, {updated} updated"
        ))
