from datetime import date
from decimal import Decimal

from medication.models import Medication, DosagePattern


def build_medication(**overrides):
    """Unsaved medication for engine tests that never touch the database."""
    fields = {
        'name': 'Warfarin',
        'medication_type': Medication.MedicationType.VITAMIN_K_ANTAGONIST,
        'dosage': Decimal('5'),
        'dosage_unit': 'mg',
        'is_anticoagulant': True,
        'max_daily_dose': Decimal('10'),
        'min_hours_between_doses': 12,
        'frequency': Medication.Frequency.ONCE_DAILY,
        'start_date': date(2024, 1, 1),
        'active': True,
    }
    fields.update(overrides)
    return Medication(**fields)


def build_pattern(medication, sequence, start_date, end_date=None):
    return DosagePattern(
        medication=medication,
        pattern_sequence=sequence,
        start_date=start_date,
        end_date=end_date,
    )
