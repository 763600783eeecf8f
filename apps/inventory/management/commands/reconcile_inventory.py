from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.inventory.services import StockLedgerService


class Command(BaseCommand):
    help = "Reports orders whose stock ledger entries do not match their line items"

    def add_arguments(self, parser):
        parser.add_argument('--days', type=int, default=None, help="Only check orders from the last N days")

    def handle(self, *args, **options):
        self.stdout.write("Starting stock ledger reconciliation...")

        since = None
        if options['days'] is not None:
            since = timezone.now() - timedelta(days=options['days'])

        gaps = StockLedgerService.find_ledger_gaps(since=since)
        for gap in gaps:
            self.stdout.write(
                self.style.WARNING(
                    f"MISMATCH {gap['order_number']} :: missing {gap['kind']} for {', '.join(gap['product_ids'])}"
                )
            )

        if gaps:
            self.stdout.write(self.style.ERROR(f"Reconciliation Complete. Found {len(gaps)} discrepancies."))
        else:
            self.stdout.write(self.style.SUCCESS("Reconciliation Complete. Ledger is consistent."))
