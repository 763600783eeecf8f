import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from .services import StockLedgerService

logger = logging.getLogger(__name__)


@shared_task(time_limit=600)
def run_ledger_reconciliation(days=2):
    """
    Nightly: report orders whose stock ledger is incomplete.
    Reports only, never auto-corrects.
    """
    since = timezone.now() - timedelta(days=days)
    gaps = StockLedgerService.find_ledger_gaps(since=since)
    if gaps:
        logger.warning(f"Ledger reconciliation found {len(gaps)} gap(s) since {since:%Y-%m-%d}")
    return f"Checked orders since {since:%Y-%m-%d}. Found {len(gaps)} gaps."
