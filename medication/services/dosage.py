# medication/services/dosage.py
from collections import namedtuple
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from ..models import Medication, DosagePattern
from .frequency import is_scheduled_day, scheduled_occurrence_index, cycles_by_occurrence
from .patterns import pattern_for_date

DOSE_DUE = 'dose'
REST_DAY = 'rest_day'
NOT_APPLICABLE = 'not_applicable'

ResolvedDose = namedtuple('ResolvedDose', ['dose', 'status', 'pattern', 'pattern_day'])


def load_patterns(medication: Medication, patterns: Optional[Iterable[DosagePattern]] = None) -> List[DosagePattern]:
    """Materialize a medication's patterns once so repeated lookups stay in memory."""
    if patterns is not None:
        return list(patterns)
    if medication.pk is None:
        return []
    return list(medication.dosage_patterns.all())


def is_within_course(medication: Medication, target_date: date) -> bool:
    if not medication.active:
        return False
    if target_date < medication.start_date:
        return False
    return medication.end_date is None or target_date <= medication.end_date


def pattern_day_for(medication: Medication, pattern: DosagePattern, target_date: date) -> int:
    """
    1-based position within ``pattern`` for a dosing day.

    Every-other-day and weekly medications advance the cycle once per dosing
    day, counted from the medication's start; the daily family advances once
    per calendar day from the pattern's start.
    """
    if cycles_by_occurrence(medication.frequency):
        occurrence = scheduled_occurrence_index(medication, target_date)
        return (occurrence % pattern.pattern_length) + 1
    return ((target_date - pattern.start_date).days % pattern.pattern_length) + 1


def resolve_dose(medication: Medication, target_date: date,
                 patterns: Optional[Iterable[DosagePattern]] = None) -> ResolvedDose:
    """
    Work out what is due on ``target_date`` and why.

    Returns a ResolvedDose whose status is ``dose`` when something is due,
    ``rest_day`` when the frequency skips the date, or ``not_applicable``
    when the medication is inactive or the date is outside its course.
    """
    if not is_within_course(medication, target_date):
        return ResolvedDose(None, NOT_APPLICABLE, None, None)

    if not is_scheduled_day(medication, target_date):
        return ResolvedDose(None, REST_DAY, None, None)

    pattern = pattern_for_date(load_patterns(medication, patterns), target_date)
    if pattern is None:
        return ResolvedDose(medication.dosage, DOSE_DUE, None, None)

    pattern_day = pattern_day_for(medication, pattern, target_date)
    if cycles_by_occurrence(medication.frequency):
        dose = pattern.dose_for_cycle_day(pattern_day)
    else:
        dose = pattern.dose_for_date(target_date)
    return ResolvedDose(dose, DOSE_DUE, pattern, pattern_day)


def expected_dose(medication: Medication, target_date: date,
                  patterns: Optional[Iterable[DosagePattern]] = None) -> Optional[Decimal]:
    """Dose expected on ``target_date``, or None when nothing is due."""
    return resolve_dose(medication, target_date, patterns).dose
