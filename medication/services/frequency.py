# medication/services/frequency.py
from collections import namedtuple
from datetime import date

from ..exceptions import InvalidArgument
from ..models import Medication

Frequency = Medication.Frequency

# Each frequency pairs a dosing-day predicate with an occurrence index.
# Both receive (medication, target_date).
FrequencyRule = namedtuple('FrequencyRule', ['is_dosing_day', 'occurrence_index'])


def _days_since_start(medication, target_date):
    return (target_date - medication.start_date).days


def _every_day(medication, target_date):
    return True


def _every_other_day(medication, target_date):
    return _days_since_start(medication, target_date) % 2 == 0


def _same_weekday(medication, target_date):
    return target_date.weekday() == medication.start_date.weekday()


def _calendar_index(medication, target_date):
    return _days_since_start(medication, target_date)


def _every_other_day_index(medication, target_date):
    return _days_since_start(medication, target_date) // 2


def _weekly_index(medication, target_date):
    return _days_since_start(medication, target_date) // 7


DAILY_RULE = FrequencyRule(_every_day, _calendar_index)

FREQUENCY_RULES = {
    Frequency.ONCE_DAILY: DAILY_RULE,
    Frequency.TWICE_DAILY: DAILY_RULE,
    Frequency.THREE_TIMES_DAILY: DAILY_RULE,
    Frequency.FOUR_TIMES_DAILY: DAILY_RULE,
    Frequency.EVERY_OTHER_DAY: FrequencyRule(_every_other_day, _every_other_day_index),
    Frequency.WEEKLY: FrequencyRule(_same_weekday, _weekly_index),
    # No system-enforced cadence
    Frequency.AS_NEEDED: DAILY_RULE,
    Frequency.CUSTOM: DAILY_RULE,
}

# Frequencies whose dosage pattern advances once per dosing day rather than
# once per calendar day.
OCCURRENCE_CYCLED_FREQUENCIES = frozenset({Frequency.EVERY_OTHER_DAY, Frequency.WEEKLY})


def get_frequency_rule(frequency: str) -> FrequencyRule:
    try:
        return FREQUENCY_RULES[frequency]
    except KeyError:
        raise InvalidArgument(f"Unknown dosing frequency: {frequency}")


def is_scheduled_day(medication: Medication, target_date: date) -> bool:
    """Check whether ``target_date`` is a dosing day for the medication's frequency."""
    return get_frequency_rule(medication.frequency).is_dosing_day(medication, target_date)


def scheduled_occurrence_index(medication: Medication, target_date: date) -> int:
    """
    0-based count of dosing days between the medication's start and ``target_date``.

    Only meaningful when ``is_scheduled_day`` is true for the date. For the
    daily family this is simply the number of calendar days since start.
    """
    return get_frequency_rule(medication.frequency).occurrence_index(medication, target_date)


def cycles_by_occurrence(frequency: str) -> bool:
    return frequency in OCCURRENCE_CYCLED_FREQUENCIES
