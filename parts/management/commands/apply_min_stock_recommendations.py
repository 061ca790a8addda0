from django.core.management.base import BaseCommand

from parts.services import MinStockService


class Command(BaseCommand):
    help = 'Write Medium/High confidence minimum stock recommendations onto auto-replenish parts'

    def add_arguments(self, parser):
        parser.add_argument(
            '--as-of',
            dest='as_of',
            default=None,
            help='Evaluate usage as of this ISO datetime instead of now'
        )

    def handle(self, *args, **options):
        result = MinStockService.apply_recommendations(as_of=options['as_of'])

        for item in result['updated']:
            self.stdout.write(f'  {item["code"]}: {item["old"]} -> {item["new"]} ({item["confidence"]})')
        if result['skipped_low_confidence']:
            self.stdout.write(self.style.WARNING(
                f'Skipped (low confidence): {", ".join(result["skipped_low_confidence"])}'
            ))
        self.stdout.write(self.style.SUCCESS(result['message']))
