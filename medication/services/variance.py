# medication/services/variance.py
from decimal import Decimal
from typing import Any, Dict

from django.conf import settings

from ..utils import to_decimal, round_two_places


def get_variance_threshold() -> Decimal:
    """Smallest absolute difference between expected and actual dose that counts as a variance."""
    return to_decimal(getattr(settings, 'DOSE_VARIANCE_THRESHOLD', Decimal('0.01')))


def calculate_variance(expected, actual, threshold=None) -> Dict[str, Any]:
    """
    Compare a logged dose against the expected dose.

    Returns:
        dict: ``amount`` (actual - expected), ``percentage`` (relative to the
        expected dose, 2 decimal places, None when the expected dose is
        missing or zero) and ``has_variance``.
    """
    if expected is None or actual is None:
        return {'amount': None, 'percentage': None, 'has_variance': False}

    if threshold is None:
        threshold = get_variance_threshold()

    expected = to_decimal(expected)
    amount = to_decimal(actual) - expected

    percentage = None
    if expected != 0:
        percentage = round_two_places(amount / expected * 100)

    return {
        'amount': amount,
        'percentage': percentage,
        'has_variance': abs(amount) > to_decimal(threshold),
    }
