"""
Rebuild the cached stock columns on every part from the transaction ledger.

Usage:
    python manage.py rebuild_part_caches           # Rebuild and report drift
    python manage.py rebuild_part_caches --check   # Only report drift
"""
from django.core.management.base import BaseCommand, CommandError

from parts.services import StockProjectionService


class Command(BaseCommand):
    help = 'Recompute in_stock, avg_cost, sell_price and usage counters from the ledger'

    def add_arguments(self, parser):
        parser.add_argument(
            '--check',
            action='store_true',
            help='Report parts whose cached columns disagree with the ledger without writing'
        )

    def handle(self, *args, **options):
        if options['check']:
            drift = StockProjectionService.find_drift()
            for report in drift:
                self.stdout.write(self.style.WARNING(
                    f'{report.code}: {", ".join(report.fields)} cached={report.cached} ledger={report.ledger}'
                ))
            if drift:
                raise CommandError(f'{len(drift)} parts have drifted caches')
            self.stdout.write(self.style.SUCCESS('All part caches match the ledger'))
            return

        result = StockProjectionService.rebuild_all()
        for item in result['drifted']:
            self.stdout.write(self.style.WARNING(f'Fixed {item["code"]}: {", ".join(item["fields"])}'))
        self.stdout.write(self.style.SUCCESS(result['message']))
