from django.core.management.base import BaseCommand

from parts.services import StockingScoreService


class Command(BaseCommand):
    help = 'Recalculate and store the stocking score of every active part'

    def add_arguments(self, parser):
        parser.add_argument(
            '--as-of',
            dest='as_of',
            default=None,
            help='Score as of this ISO datetime instead of now'
        )

    def handle(self, *args, **options):
        result = StockingScoreService.refresh_all(as_of=options['as_of'])

        for label, count in sorted(result['distribution'].items()):
            self.stdout.write(f'  {label}: {count}')
        self.stdout.write(self.style.SUCCESS(result['message']))
