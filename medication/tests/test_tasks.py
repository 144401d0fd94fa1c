from datetime import datetime, time, timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.db import IntegrityError, transaction
from django.db.models.query import QuerySet
from django.utils import timezone

from medication.models import Medication, MedicationLog
from medication.services.patterns import add_dosage_pattern
from medication.tasks import generate_scheduled_doses, create_scheduled_logs, parse_dose_time

pytestmark = pytest.mark.django_db


def test_parse_dose_time():
    assert parse_dose_time('08:30') == time(8, 30)
    with pytest.raises(ValueError):
        parse_dose_time('8.30')


def test_creates_one_log_per_dose_time(medication):
    medication.scheduled_times = ['20:00', '08:00']
    medication.save()
    add_dosage_pattern(medication, [4, 3], timezone.localdate())

    generate_scheduled_doses()

    logs = MedicationLog.objects.filter(medication=medication).order_by('scheduled_time')
    assert logs.count() == 2
    assert [timezone.localtime(log.scheduled_time).time() for log in logs] == [time(8, 0), time(20, 0)]
    assert all(log.status == MedicationLog.Status.SCHEDULED for log in logs)
    assert all(log.expected_dose == Decimal('4') for log in logs)
    assert all(log.pattern_day == 1 for log in logs)
    assert all(log.entry_method == MedicationLog.EntryMethod.AUTOMATIC for log in logs)


def test_is_idempotent(medication):
    generate_scheduled_doses()
    generate_scheduled_doses()

    assert MedicationLog.objects.filter(medication=medication).count() == 1
    log = MedicationLog.objects.get(medication=medication)
    assert timezone.localtime(log.scheduled_time).time() == time(8, 0)


def test_skips_rest_days_and_inactive_medications(user, medication):
    today = timezone.localdate()
    every_other_day = Medication.objects.create(
        patient=user,
        name='Apixaban',
        medication_type=Medication.MedicationType.DOAC,
        dosage=Decimal('5'),
        max_daily_dose=Decimal('10'),
        frequency=Medication.Frequency.EVERY_OTHER_DAY,
        start_date=today - timedelta(days=1),
    )
    medication.active = False
    medication.save()

    assert create_scheduled_logs(every_other_day, today) == (0, 0)
    generate_scheduled_doses()

    assert MedicationLog.objects.count() == 0


def _generated_log(medication, scheduled_time, **extra):
    return MedicationLog.objects.create(
        medication=medication,
        patient=medication.patient,
        scheduled_time=scheduled_time,
        status=MedicationLog.Status.SCHEDULED,
        entry_method=extra.pop('entry_method', MedicationLog.EntryMethod.AUTOMATIC),
        **extra
    )


def test_generated_logs_are_unique_per_dose_time(medication):
    scheduled_time = timezone.make_aware(datetime.combine(timezone.localdate(), time(8, 0)))
    _generated_log(medication, scheduled_time)

    with pytest.raises(IntegrityError), transaction.atomic():
        _generated_log(medication, scheduled_time)

    # Manual entries and deleted generated logs do not count
    _generated_log(medication, scheduled_time, entry_method=MedicationLog.EntryMethod.MANUAL)
    _generated_log(medication, scheduled_time, is_deleted=True)


def test_concurrently_generated_log_is_counted_as_skipped(medication):
    today = timezone.localdate()
    _generated_log(medication, timezone.make_aware(datetime.combine(today, time(8, 0))))

    # Another run inserted the log after this one checked for it
    with mock.patch.object(QuerySet, 'exists', return_value=False):
        assert create_scheduled_logs(medication, today) == (0, 1)

    assert MedicationLog.objects.filter(medication=medication).count() == 1
