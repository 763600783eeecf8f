"""
Daily order numbers: PREFIX-YYYYMMDD-NNNNN, widening past 99999.

The next number is read from the highest number already issued for the
day. Two requests may read the same value; the unique index on
Order.number lets only one insert win and the loser re-reads and retries.
"""
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models.functions import Length
from django.utils import timezone

from apps.utils.exceptions import ConsistencyFailure

from .models import Order

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 5


def order_number_prefix(day=None):
    day = day or timezone.localdate()
    return f"{settings.ORDER_NUMBER_PREFIX}-{day:%Y%m%d}-"


def parse_sequence(number):
    return int(number.rsplit("-", 1)[1])


def next_order_number(day=None):
    prefix = order_number_prefix(day)
    last = (
        Order.objects
        .filter(number__startswith=prefix)
        # Sequences outgrow the padding, so longer numbers sort first
        .order_by(Length("number").desc(), "-number")
        .values_list("number", flat=True)
        .first()
    )
    sequence = parse_sequence(last) + 1 if last else 1
    return f"{prefix}{sequence:0{SEQUENCE_WIDTH}d}"


def create_with_order_number(create, day=None):
    """
    Calls `create(number)` inside a savepoint until it gets a number no
    one else has taken. Any IntegrityError that is not a number clash
    propagates.
    """
    max_attempts = settings.ORDER_NUMBER_MAX_RETRIES
    for attempt in range(1, max_attempts + 1):
        number = next_order_number(day)
        try:
            with transaction.atomic():
                return create(number)
        except IntegrityError:
            if not Order.objects.filter(number=number).exists():
                raise
            logger.warning(
                f"Order number {number} taken concurrently (attempt {attempt}/{max_attempts}). Retrying.",
                extra={"order_number": number},
            )

    logger.error(f"Could not allocate an order number after {max_attempts} attempts")
    raise ConsistencyFailure(
        "Could not allocate an order number. Please try again.",
        code="ORDER_NUMBER_EXHAUSTED",
    )
