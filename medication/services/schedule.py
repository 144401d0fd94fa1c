# medication/services/schedule.py
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional
import logging

from django.conf import settings
from django.utils import timezone

from ..exceptions import InvalidArgument
from ..models import Medication, DosagePattern
from ..utils import format_dose, round_two_places, years_before
from .dosage import resolve_dose, load_patterns, DOSE_DUE
from .patterns import pattern_for_date, same_pattern

logger = logging.getLogger(__name__)


def validate_projection_window(start_date: date, days: int, today: Optional[date] = None):
    """
    Refuse projections that are too long or start too far in the past.

    Raises:
        InvalidArgument: If ``days`` is outside [1, SCHEDULE_MAX_DAYS] or
            ``start_date`` is more than SCHEDULE_MAX_PAST_YEARS calendar
            years ago
    """
    max_days = getattr(settings, 'SCHEDULE_MAX_DAYS', 365)
    max_past_years = getattr(settings, 'SCHEDULE_MAX_PAST_YEARS', 1)
    today = today or timezone.localdate()

    if days < 1 or days > max_days:
        raise InvalidArgument(f"Days must be between 1 and {max_days}")

    if start_date < years_before(today, max_past_years):
        raise InvalidArgument("Start date cannot be more than 1 year in the past")


def _entry_display(dose: Optional[Decimal], unit: str, pattern_day: Optional[int], pattern_length: Optional[int]) -> str:
    if dose is None:
        return "No dose"
    text = format_dose(dose, unit)
    if pattern_day is not None and pattern_length and pattern_length > 1:
        return f"{text} (Day {pattern_day}/{pattern_length})"
    return text


def summarize_pattern(medication: Medication, pattern: Optional[DosagePattern], start_date: date) -> Dict[str, Any]:
    """Pattern summary shown alongside a schedule; falls back to the fixed dose."""
    if pattern is None:
        return {
            'id': None,
            'pattern_length': 1,
            'start_date': start_date,
            'average_dose': medication.dosage,
            'display_pattern': f"{format_dose(medication.dosage, medication.dosage_unit)} daily",
        }
    return {
        'id': pattern.pk,
        'pattern_length': pattern.pattern_length,
        'start_date': pattern.start_date,
        'average_dose': round_two_places(pattern.average_dose),
        'display_pattern': pattern.display_pattern(medication.dosage_unit),
    }


def project_schedule(medication: Medication, start_date: date, days: int, detect_pattern_changes: bool = True,
                     patterns: Optional[Iterable[DosagePattern]] = None, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Project expected doses day by day over ``days`` days from ``start_date``.

    Every day in the range gets an entry. Days without a dose carry
    ``dose=None`` and a status of ``rest_day`` (frequency skips the date) or
    ``not_applicable`` (outside the course, or medication inactive).

    Returns:
        dict: medication info, ``current_pattern`` summary, ``summary``
        statistics and the ``schedule`` entries

    Raises:
        InvalidArgument: If the projection window is invalid
    """
    validate_projection_window(start_date, days, today=today)

    patterns = load_patterns(medication, patterns)
    unit = medication.dosage_unit

    schedule = []
    doses = []
    previous_pattern = None

    for offset in range(days):
        current_date = start_date + timedelta(days=offset)
        resolved = resolve_dose(medication, current_date, patterns)
        current_pattern = pattern_for_date(patterns, current_date)

        pattern_day = None
        pattern_length = None
        if resolved.status == DOSE_DUE:
            doses.append(resolved.dose)
            if resolved.pattern is not None:
                pattern_day = resolved.pattern_day
                pattern_length = resolved.pattern.pattern_length
            else:
                pattern_day = 1
                pattern_length = 1

        is_pattern_change = False
        pattern_change_note = None
        if detect_pattern_changes and current_pattern is not None:
            if not same_pattern(previous_pattern, current_pattern):
                is_pattern_change = True
                pattern_change_note = f"New pattern starts: {current_pattern.display_pattern(unit)}"

        schedule.append({
            'date': current_date,
            'day_of_week': current_date.strftime('%A'),
            'dose': resolved.dose,
            'dosage_unit': unit,
            'status': resolved.status,
            'pattern_day': pattern_day,
            'pattern_length': pattern_length,
            'is_pattern_change': is_pattern_change,
            'pattern_change_note': pattern_change_note,
            'display_text': _entry_display(resolved.dose, unit, pattern_day, pattern_length),
        })
        previous_pattern = current_pattern

    starting_pattern = pattern_for_date(patterns, start_date)
    total_dose = sum(doses, Decimal('0'))

    if starting_pattern is not None and starting_pattern.pattern_length:
        pattern_cycles = round_two_places(Decimal(days) / starting_pattern.pattern_length)
    else:
        pattern_cycles = Decimal('0')

    summary = {
        'total_dose': total_dose,
        'average_daily_dose': round_two_places(total_dose / days),
        'min_dose': min(doses) if doses else None,
        'max_dose': max(doses) if doses else None,
        'dosing_days': len(doses),
        'pattern_cycles': pattern_cycles,
    }

    logger.info(
        f"Generated {days}-day schedule for medication {medication.pk}, total dose: {format_dose(total_dose, unit)}"
    )

    return {
        'medication_id': medication.pk,
        'medication_name': medication.name,
        'dosage_unit': unit,
        'start_date': start_date,
        'end_date': start_date + timedelta(days=days - 1),
        'total_days': days,
        'current_pattern': summarize_pattern(medication, starting_pattern, start_date),
        'summary': summary,
        'schedule': schedule,
    }
