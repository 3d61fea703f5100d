# fixifly/management/commands/auto_decline_overdue_tasks.py

from django.core.management.base import BaseCommand
from django.utils import timezone

from fixifly.services.task_lifecycle import auto_decline_overdue_assignments, response_window


class Command(BaseCommand):
    help = 'Decline task assignments the vendor did not answer within the response window'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be declined without declining anything',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        window_minutes = int(response_window().total_seconds() // 60)

        references = auto_decline_overdue_assignments(now=timezone.now(), dry_run=dry_run)

        if not references:
            self.stdout.write(self.style.SUCCESS('No overdue assignments found.'))
            return

        self.stdout.write(
            f'Found {len(references)} assignment(s) unanswered for more than {window_minutes} minutes.'
        )
        for reference in references:
            self.stdout.write(f'  - {reference}')

        if dry_run:
            self.stdout.write(self.style.WARNING('DRY RUN - No changes made.'))
            return

        self.stdout.write(self.style.SUCCESS(f'Auto-declined {len(references)} assignment(s).'))
