# medication/utils.py
from decimal import Decimal, ROUND_HALF_UP

TWO_PLACES = Decimal('0.01')


def to_decimal(value):
    """Convert a stored dose amount (int, float, str or Decimal) to Decimal."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    # str() keeps floats read back from JSON at their written precision
    return Decimal(str(value))


def round_two_places(value):
    """Round a Decimal to 2 decimal places, half away from zero."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_dose(amount, unit=''):
    """
    Render a dose amount without trailing zeros, e.g. 4.000 -> "4", 3.50 -> "3.5".

    Amounts are shown with at most two decimal places.
    """
    if amount is None:
        return ''
    text = f"{round_two_places(amount):f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return f"{text}{unit}"


def years_before(day, years=1):
    """Same calendar date ``years`` earlier; Feb 29 falls back to Feb 28."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)
