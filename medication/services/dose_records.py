# medication/services/dose_records.py
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple
import logging

from django.db import transaction
from django.utils import timezone

from ..models import Medication, DosagePattern, MedicationLog
from .dosage import ResolvedDose, resolve_dose
from .safety import DOSE_TAKING_STATUSES, SafetyCheckResult, validate_dose_event
from .variance import calculate_variance

logger = logging.getLogger(__name__)

SAFETY_CHECKED_STATUSES = DOSE_TAKING_STATUSES

# Log fields a caller may amend after creation
AMENDABLE_FIELDS = (
    'actual_time', 'status', 'actual_dose', 'actual_dose_unit', 'reason',
    'side_effects', 'notes', 'taken_with_food', 'food_details',
)


def snapshot_expected_dose(log: MedicationLog, patterns: Optional[Iterable[DosagePattern]] = None) -> ResolvedDose:
    """
    Capture the dose expected on the log's scheduled date.

    Called once, when the log is created. The snapshot is never refreshed so
    that later pattern edits do not change historical adherence.
    """
    resolved = resolve_dose(log.medication, timezone.localdate(log.scheduled_time), patterns)
    log.expected_dose = resolved.dose
    log.dosage_pattern = resolved.pattern
    log.pattern_day = resolved.pattern_day
    return resolved


def refresh_derived_fields(log: MedicationLog):
    """Recompute variance and timing fields from the stored snapshot."""
    variance = calculate_variance(log.expected_dose, log.actual_dose)
    log.variance_amount = variance['amount']
    log.variance_percentage = variance['percentage']
    log.has_variance = variance['has_variance']

    if log.actual_time and log.scheduled_time:
        log.time_variance_minutes = int((log.actual_time - log.scheduled_time).total_seconds() / 60)
    else:
        log.time_variance_minutes = 0


def recent_dose_history(medication: Medication, patient, actual_time: datetime) -> List[MedicationLog]:
    """
    Taken and partially-taken doses around ``actual_time`` that the safety gate needs.

    Covers the minimum-interval lookback and the whole UTC day of the event.
    """
    lookback = timedelta(hours=max(24, medication.min_hours_between_doses))
    return list(
        MedicationLog.objects.filter(
            medication=medication,
            patient=patient,
            status__in=SAFETY_CHECKED_STATUSES,
            is_deleted=False,
            actual_time__isnull=False,
            actual_time__gte=actual_time - lookback,
            actual_time__lt=actual_time + timedelta(hours=24),
        )
    )


def lock_medication(medication: Medication) -> Medication:
    """
    Lock the medication row for the rest of the current transaction.

    Dose writers for the same medication queue on this lock, so each one
    checks its history after the previous writer has committed.
    """
    return Medication.objects.select_for_update().get(pk=medication.pk)


def record_dose(medication: Medication, patient, status: str = MedicationLog.Status.TAKEN,
                actual_time: Optional[datetime] = None, scheduled_time: Optional[datetime] = None,
                actual_dose=None, **details: Any) -> Tuple[Optional[MedicationLog], SafetyCheckResult]:
    """
    Validate and store a dose event.

    Taken and partially-taken doses go through ``validate_dose_event``; a
    rejection stores nothing. Advisory acceptances are stored with
    ``safety_advisory`` set. The history read, the check and the insert run
    under a lock on the medication row.

    Returns:
        tuple: (MedicationLog or None, SafetyCheckResult)
    """
    now = timezone.now()
    result = SafetyCheckResult()

    with transaction.atomic():
        if status in SAFETY_CHECKED_STATUSES:
            lock_medication(medication)
            actual_time = actual_time or now
            if actual_dose is None:
                actual_dose = medication.dosage
            history = recent_dose_history(medication, patient, actual_time)
            result = validate_dose_event(medication, actual_time, actual_dose, history, now=now)
            if not result.is_valid:
                return None, result

        log = MedicationLog(
            medication=medication,
            patient=patient,
            status=status,
            scheduled_time=scheduled_time or actual_time or now,
            actual_time=actual_time,
            actual_dose=actual_dose,
            actual_dose_unit=details.pop('actual_dose_unit', None) or medication.dosage_unit,
            safety_advisory=result.is_advisory,
            safety_notes='\n'.join(result.warnings),
            **details
        )
        log.save()

    logger.info(
        f"Medication dose logged: {log.id} for medication {medication.id} ({log.status}, outcome {result.outcome})"
    )
    return log, result


def amend_dose_record(log: MedicationLog, **changes: Any) -> Tuple[Optional[MedicationLog], SafetyCheckResult]:
    """
    Amend a stored log.

    Changes that make the entry a taken dose are re-checked by the safety
    gate against the patient's other doses, under the same medication lock
    as ``record_dose``. The expected-dose snapshot is kept as is.

    Returns:
        tuple: (MedicationLog or None, SafetyCheckResult)

    Raises:
        ValueError: If ``changes`` names a field that cannot be amended
    """
    unknown = set(changes) - set(AMENDABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot amend fields: {', '.join(sorted(unknown))}")

    result = SafetyCheckResult()
    status = changes.get('status', log.status)
    dose_changed = any(name in changes for name in ('actual_time', 'actual_dose', 'status'))

    with transaction.atomic():
        if status in SAFETY_CHECKED_STATUSES and dose_changed:
            lock_medication(log.medication)
            actual_time = changes.get('actual_time', log.actual_time) or timezone.now()
            actual_dose = changes.get('actual_dose', log.actual_dose)
            history = [
                entry for entry in recent_dose_history(log.medication, log.patient, actual_time)
                if entry.pk != log.pk
            ]
            result = validate_dose_event(log.medication, actual_time, actual_dose, history)
            if not result.is_valid:
                return None, result
            changes.setdefault('actual_time', actual_time)
            log.safety_advisory = result.is_advisory
            log.safety_notes = '\n'.join(result.warnings)

        for name, value in changes.items():
            setattr(log, name, value)
        log.save()

    logger.info(f"Medication log updated: {log.id} for medication {log.medication_id}")
    return log, result
