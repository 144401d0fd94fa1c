from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest

from medication.models import Medication, MedicationLog
from medication.services.safety import (
    ACCEPT, ADVISORY, REJECT,
    get_grace_floor, validate_dose_event, validate_medication_safety, validate_pattern_request,
)

from .factories import build_medication

NOW = datetime(2024, 3, 10, 22, 0, tzinfo=dt_timezone.utc)


def taken(actual_time, dose=4, status=MedicationLog.Status.TAKEN, **extra):
    return MedicationLog(
        status=status,
        actual_time=actual_time,
        actual_dose=Decimal(str(dose)),
        **extra
    )


class TestMinimumInterval:
    def test_grace_floor(self):
        assert get_grace_floor(12) == 10
        assert get_grace_floor(24) == pytest.approx(22)

    def test_inside_grace_floor_is_rejected(self):
        result = validate_dose_event(build_medication(), NOW, 4, [taken(NOW - timedelta(hours=9))], now=NOW)
        assert result.outcome == REJECT
        assert "Too soon for next dose" in result.errors[0]

    def test_grace_window_is_advisory(self):
        result = validate_dose_event(build_medication(), NOW, 4, [taken(NOW - timedelta(hours=11))], now=NOW)
        assert result.outcome == ADVISORY
        assert result.is_valid
        assert result.warnings

    def test_after_minimum_interval_is_accepted(self):
        result = validate_dose_event(build_medication(), NOW, 4, [taken(NOW - timedelta(hours=13))], now=NOW)
        assert result.outcome == ACCEPT
        assert result.reasons == []

    def test_only_applies_to_anticoagulants(self):
        medication = build_medication(is_anticoagulant=False)
        result = validate_dose_event(medication, NOW, 4, [taken(NOW - timedelta(hours=1))], now=NOW)
        assert result.outcome == ACCEPT

    def test_ignores_later_doses_and_other_statuses(self):
        history = [
            taken(NOW + timedelta(hours=1)),
            MedicationLog(status=MedicationLog.Status.SKIPPED, actual_time=NOW - timedelta(hours=1)),
            taken(NOW - timedelta(hours=2), is_deleted=True),
        ]
        result = validate_dose_event(build_medication(), NOW, 1, history, now=NOW + timedelta(hours=2))
        assert result.outcome == ACCEPT

    def test_partially_taken_dose_counts_as_previous_dose(self):
        history = [taken(NOW - timedelta(hours=1), status=MedicationLog.Status.PARTIALLY_TAKEN)]
        result = validate_dose_event(build_medication(), NOW, 4, history, now=NOW)
        assert result.outcome == REJECT
        assert "Too soon" in result.errors[0]


class TestDailyLimit:
    def setup_method(self):
        self.medication = build_medication(min_hours_between_doses=1, max_daily_dose=Decimal('10'))
        self.history = [taken(NOW.replace(hour=8)), taken(NOW.replace(hour=14))]

    def test_exceeding_limit_is_rejected(self):
        result = validate_dose_event(self.medication, NOW.replace(hour=20), 3, self.history, now=NOW)
        assert result.outcome == REJECT
        assert any("already taken 8" in reason.lower() for reason in result.errors)

    def test_reaching_limit_is_accepted(self):
        result = validate_dose_event(self.medication, NOW.replace(hour=20), 2, self.history, now=NOW)
        assert result.outcome == ACCEPT

    def test_previous_day_does_not_count(self):
        history = [taken(NOW - timedelta(days=1)), taken(NOW - timedelta(days=1, hours=6))]
        result = validate_dose_event(self.medication, NOW, 6, history, now=NOW)
        assert result.outcome == ACCEPT


class TestPlausibility:
    def test_future_dose_is_rejected(self):
        result = validate_dose_event(build_medication(), NOW + timedelta(minutes=10), 4, [], now=NOW)
        assert result.errors == ["Cannot log medication doses in the future"]

    def test_small_clock_skew_is_tolerated(self):
        result = validate_dose_event(build_medication(), NOW + timedelta(minutes=4), 4, [], now=NOW)
        assert result.outcome == ACCEPT

    def test_non_positive_dose(self):
        result = validate_dose_event(build_medication(), NOW, 0, [], now=NOW)
        assert "Dose must be greater than 0" in result.errors

    def test_single_dose_above_daily_maximum(self):
        result = validate_dose_event(build_medication(), NOW, 12, [], now=NOW)
        assert any(reason.startswith("Single dose (12mg)") for reason in result.errors)

    def test_failures_accumulate(self):
        history = [taken(NOW - timedelta(hours=1))]
        result = validate_dose_event(build_medication(), NOW + timedelta(hours=1), 12, history, now=NOW)
        assert len(result.errors) == 4

    def test_defaults_to_fixed_dose(self):
        result = validate_dose_event(build_medication(dosage=Decimal('5')), NOW, None, [], now=NOW)
        assert result.outcome == ACCEPT


class TestMedicationSafety:
    def data(self, **overrides):
        values = {
            'name': 'Warfarin',
            'medication_type': Medication.MedicationType.VITAMIN_K_ANTAGONIST,
            'dosage': Decimal('5'),
            'max_daily_dose': Decimal('10'),
            'min_hours_between_doses': 12,
            'is_anticoagulant': True,
            'requires_inr_monitoring': True,
            'inr_target_min': Decimal('2.0'),
            'inr_target_max': Decimal('3.0'),
            'start_date': date(2024, 1, 1),
        }
        values.update(overrides)
        return values

    def test_valid_configuration(self):
        result = validate_medication_safety(self.data(), today=date(2024, 2, 1))
        assert result.outcome == ACCEPT

    def test_monitored_anticoagulant_limits(self):
        result = validate_medication_safety(
            self.data(min_hours_between_doses=8, max_daily_dose=Decimal('25')), today=date(2024, 2, 1)
        )
        assert len(result.errors) == 2

    def test_unmonitored_anticoagulant_gets_warning(self):
        result = validate_medication_safety(
            self.data(requires_inr_monitoring=False, min_hours_between_doses=8), today=date(2024, 2, 1)
        )
        assert result.outcome == ADVISORY

    @pytest.mark.parametrize('inr_min,inr_max', [('0.4', '3.0'), ('2.0', '8.5'), ('3.0', '2.0'), ('2.5', '2.5')])
    def test_inr_range(self, inr_min, inr_max):
        result = validate_medication_safety(
            self.data(inr_target_min=Decimal(inr_min), inr_target_max=Decimal(inr_max)), today=date(2024, 2, 1)
        )
        assert result.outcome == REJECT

    def test_vitamin_k_antagonist_dose_cap(self):
        result = validate_medication_safety(
            self.data(dosage=Decimal('25'), max_daily_dose=Decimal('20')), today=date(2024, 2, 1)
        )
        assert "Warfarin dosage above 20mg requires special attention" in result.errors

    def test_dates(self):
        result = validate_medication_safety(
            self.data(start_date=date(2024, 3, 1), end_date=date(2024, 2, 1)), today=date(2024, 2, 15)
        )
        assert "End date cannot be before start date" in result.errors
        assert "Start date cannot be in the future" in result.errors


class TestPatternRequest:
    today = date(2024, 6, 1)

    def test_valid_request(self):
        result = validate_pattern_request(build_medication(), [4, 4, 3], self.today, today=self.today)
        assert result.outcome == ACCEPT

    def test_dose_bounds(self):
        result = validate_pattern_request(
            build_medication(medication_type=Medication.MedicationType.DOAC, name='Apixaban'),
            [4, 0.05], self.today, today=self.today,
        )
        assert result.outcome == REJECT

    def test_empty_and_oversized(self):
        assert not validate_pattern_request(build_medication(), [], self.today, today=self.today).is_valid
        assert not validate_pattern_request(build_medication(), [1] * 366, self.today, today=self.today).is_valid

    def test_advisories(self):
        result = validate_pattern_request(
            build_medication(), [4], self.today - timedelta(days=10), today=self.today
        )
        assert result.outcome == ADVISORY
        assert len(result.warnings) == 2

    def test_long_pattern_warning(self):
        result = validate_pattern_request(build_medication(), [4, 3] * 11, self.today, today=self.today)
        assert result.outcome == ADVISORY

    def test_warfarin_cap_applies_by_name(self):
        medication = build_medication(medication_type=Medication.MedicationType.OTHER, name='Warfarin sodium')
        result = validate_pattern_request(medication, [4, 22], self.today, today=self.today)
        assert result.outcome == REJECT

    def test_date_rules(self):
        result = validate_pattern_request(
            build_medication(), [4], self.today - timedelta(days=400),
            end_date=self.today - timedelta(days=500), notes='x' * 501, today=self.today,
        )
        assert len(result.errors) == 3
