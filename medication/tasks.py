import logging
from datetime import date, datetime, time
from typing import List, Tuple

from celery import shared_task
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import DosageEngineError

logger = logging.getLogger(__name__)


def parse_dose_time(value: str) -> time:
    """Parse an "HH:MM" dose time."""
    hours, minutes = str(value).split(':')
    return time(int(hours), int(minutes))


def dose_times_for(medication) -> List[time]:
    times = medication.scheduled_times or [getattr(settings, 'DEFAULT_DOSE_TIME', '08:00')]
    return sorted({parse_dose_time(value) for value in times})


def create_scheduled_logs(medication, target_date: date) -> Tuple[int, int]:
    """
    Create ``scheduled`` logs for one medication on ``target_date``.

    Existing logs at the same scheduled time are left alone, so the task
    can run any number of times a day. A log created concurrently by
    an overlapping run trips the single_generated_log_per_time constraint
    and is counted as skipped.

    Returns:
        tuple: (created count, skipped count)
    """
    from .models import MedicationLog
    from .services.dosage import resolve_dose, DOSE_DUE

    resolved = resolve_dose(medication, target_date)
    if resolved.status != DOSE_DUE:
        return 0, 0

    created = 0
    skipped = 0
    current_tz = timezone.get_current_timezone()

    for dose_time in dose_times_for(medication):
        scheduled_time = timezone.make_aware(datetime.combine(target_date, dose_time), current_tz)
        exists = MedicationLog.objects.filter(
            medication=medication,
            scheduled_time=scheduled_time,
            is_deleted=False,
        ).exists()
        if exists:
            skipped += 1
            continue

        try:
            with transaction.atomic():
                MedicationLog.objects.create(
                    medication=medication,
                    patient=medication.patient,
                    scheduled_time=scheduled_time,
                    status=MedicationLog.Status.SCHEDULED,
                    expected_dose=resolved.dose,
                    dosage_pattern=resolved.pattern,
                    pattern_day=resolved.pattern_day,
                    actual_dose_unit=medication.dosage_unit,
                    entry_method=MedicationLog.EntryMethod.AUTOMATIC,
                )
        except IntegrityError:
            logger.info(f"Scheduled dose for medication {medication.id} at {scheduled_time} already generated")
            skipped += 1
            continue
        created += 1

    return created, skipped


@shared_task
def generate_scheduled_doses():
    """
    Create today's scheduled dose logs for every active medication.
    Runs daily shortly after midnight.
    """
    from .models import Medication

    today = timezone.localdate()
    logger.info(f"Generating scheduled doses for {today}")

    medications = Medication.objects.filter(active=True).prefetch_related('dosage_patterns')

    created_count = 0
    skipped_count = 0
    failed_count = 0

    for medication in medications:
        try:
            created, skipped = create_scheduled_logs(medication, today)
        except (DosageEngineError, ValueError) as e:
            logger.error(f"Error generating scheduled doses for medication {medication.id}: {str(e)}")
            failed_count += 1
            continue
        created_count += created
        skipped_count += skipped

    logger.info(
        f"Created {created_count} scheduled doses, {skipped_count} already present, {failed_count} failed"
    )
    return f"Created {created_count} scheduled doses, {skipped_count} skipped, {failed_count} failed"
