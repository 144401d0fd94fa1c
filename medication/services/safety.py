# medication/services/safety.py
"""
Safety gates for anticoagulant dosing.

Per-event validation (``validate_dose_event``) checks a proposed dose against
timing, cumulative daily amount and plausibility limits. Configuration
validation (``validate_medication_safety`` and ``validate_pattern_request``)
runs when a medication or dosage pattern is created or changed.

Rule violations are returned as a ``SafetyCheckResult`` carrying every
problem found; they are never raised.
"""
from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from django.conf import settings
from django.utils import timezone

from ..models import Medication, MedicationLog
from ..utils import to_decimal, format_dose, years_before

logger = logging.getLogger(__name__)

ACCEPT = 'accept'
ADVISORY = 'advisory'
REJECT = 'reject'

ANTICOAGULANT_MIN_HOURS = 12
ANTICOAGULANT_MAX_DAILY_DOSE = Decimal('20')
VKA_MAX_SINGLE_DOSE = Decimal('20')
INR_TARGET_FLOOR = Decimal('0.5')
INR_TARGET_CEILING = Decimal('8.0')

PATTERN_MIN_DOSE = Decimal('0.1')
PATTERN_MAX_DOSE = Decimal('1000')
PATTERN_MAX_LENGTH = 365
PATTERN_LONG_WARNING_LENGTH = 20
PATTERN_BACKDATE_WARNING_DAYS = 7
PATTERN_NOTES_MAX_LENGTH = 500

MEDICATION_SAFETY_FIELDS = (
    'name', 'medication_type', 'dosage', 'dosage_unit', 'is_anticoagulant',
    'max_daily_dose', 'min_hours_between_doses', 'requires_inr_monitoring',
    'inr_target_min', 'inr_target_max', 'start_date', 'end_date',
)


class SafetyCheckResult:
    """
    Outcome of a safety check.

    ``errors`` block the action; ``warnings`` are advisory and allow the
    caller to proceed. The outcome is ``reject`` when any error exists,
    ``advisory`` when only warnings exist, and ``accept`` otherwise.
    """

    def __init__(self, errors=None, warnings=None):
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])

    def add_error(self, message):
        self.errors.append(message)

    def add_warning(self, message):
        self.warnings.append(message)

    @property
    def outcome(self) -> str:
        if self.errors:
            return REJECT
        if self.warnings:
            return ADVISORY
        return ACCEPT

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def is_advisory(self) -> bool:
        return self.outcome == ADVISORY

    @property
    def reasons(self) -> List[str]:
        return self.errors + self.warnings

    def as_dict(self) -> Dict[str, Any]:
        return {
            'outcome': self.outcome,
            'errors': self.errors,
            'warnings': self.warnings,
        }

    def __repr__(self):
        return f"<SafetyCheckResult {self.outcome} errors={len(self.errors)} warnings={len(self.warnings)}>"


def get_grace_floor(min_hours: float) -> float:
    """Hours below which a dose is refused outright: max(min - 2, min * 0.8) by default."""
    grace_hours = getattr(settings, 'DOSE_GRACE_HOURS', 2)
    grace_ratio = getattr(settings, 'DOSE_GRACE_RATIO', 0.8)
    return max(min_hours - grace_hours, min_hours * grace_ratio)


def _utc_date(moment: datetime) -> date:
    return moment.astimezone(dt_timezone.utc).date()


# Statuses whose doses count towards the interval and daily-limit checks
DOSE_TAKING_STATUSES = (MedicationLog.Status.TAKEN, MedicationLog.Status.PARTIALLY_TAKEN)


def _taken_doses(history: Iterable[MedicationLog]) -> List[MedicationLog]:
    return [
        entry for entry in history
        if entry.status in DOSE_TAKING_STATUSES
        and entry.actual_time is not None
        and not getattr(entry, 'is_deleted', False)
    ]


def _check_minimum_interval(result: SafetyCheckResult, medication: Medication, actual_time: datetime,
                            taken: List[MedicationLog]):
    min_hours = medication.min_hours_between_doses
    previous = [entry for entry in taken if entry.actual_time < actual_time]
    if not previous:
        return

    last_dose = max(previous, key=lambda entry: entry.actual_time)
    hours_since = (actual_time - last_dose.actual_time).total_seconds() / 3600
    grace_floor = get_grace_floor(min_hours)

    if hours_since < grace_floor:
        result.add_error(
            f"Too soon for next dose. Minimum {min_hours} hours required between doses for this medication. "
            f"Last dose was {hours_since:.1f} hours ago. "
            f"Please wait at least {grace_floor - hours_since:.1f} more hours."
        )
    elif hours_since < min_hours:
        logger.warning(
            f"Dose logged within grace period: {hours_since:.1f} hours since last dose (minimum: {min_hours})"
        )
        result.add_warning(
            f"Dose taken {hours_since:.1f} hours after the previous dose, "
            f"inside the {min_hours}-hour minimum interval."
        )


def validate_dose_event(medication: Medication, actual_time: Optional[datetime] = None, dose=None,
                        history: Iterable[MedicationLog] = (), now: Optional[datetime] = None) -> SafetyCheckResult:
    """
    Decide whether a dose-taking event may be recorded.

    Args:
        medication: Medication the dose belongs to
        actual_time: When the dose was taken (default now)
        dose: Amount taken (default the medication's fixed dose)
        history: The patient's logs for the same medication; only taken or
            partially-taken, non-deleted entries with an actual time count
        now: Reference time for the future-dose check

    Returns:
        SafetyCheckResult: every failing check is reported
    """
    now = now or timezone.now()
    actual_time = actual_time or now
    dose = to_decimal(dose if dose is not None else medication.dosage)
    unit = medication.dosage_unit
    max_daily = to_decimal(medication.max_daily_dose)
    result = SafetyCheckResult()
    taken = _taken_doses(history)

    tolerance = timedelta(minutes=getattr(settings, 'DOSE_FUTURE_TOLERANCE_MINUTES', 5))
    if actual_time > now + tolerance:
        result.add_error("Cannot log medication doses in the future")

    if medication.is_anticoagulant and medication.min_hours_between_doses > 0:
        _check_minimum_interval(result, medication, actual_time, taken)

    event_day = _utc_date(actual_time)
    taken_today = sum(
        (to_decimal(entry.actual_dose) for entry in taken
         if entry.actual_dose is not None and _utc_date(entry.actual_time) == event_day),
        Decimal('0')
    )
    if taken_today + dose > max_daily:
        result.add_error(
            f"Daily dose limit ({format_dose(max_daily, unit)}) would be exceeded. "
            f"Already taken {format_dose(taken_today, unit)} today."
        )

    if dose <= 0:
        result.add_error("Dose must be greater than 0")
    elif dose > max_daily:
        result.add_error(
            f"Single dose ({format_dose(dose, unit)}) exceeds maximum daily dose ({format_dose(max_daily, unit)})"
        )

    if not result.is_valid:
        logger.warning(
            f"Dose event rejected for medication {medication.pk}: {'; '.join(result.errors)}"
        )
    return result


def validate_medication_safety(data: Mapping[str, Any], today: Optional[date] = None) -> SafetyCheckResult:
    """
    Validate a medication's configured limits.

    ``data`` is a mapping with the keys in MEDICATION_SAFETY_FIELDS; missing
    keys are skipped.
    """
    today = today or timezone.localdate()
    result = SafetyCheckResult()

    dosage = to_decimal(data.get('dosage'))
    max_daily = to_decimal(data.get('max_daily_dose'))
    min_hours = data.get('min_hours_between_doses')
    inr_min = to_decimal(data.get('inr_target_min'))
    inr_max = to_decimal(data.get('inr_target_max'))
    start_date = data.get('start_date')
    end_date = data.get('end_date')

    if dosage is not None and dosage <= 0:
        result.add_error("Medication dosage must be greater than 0")

    if max_daily is not None and max_daily <= 0:
        result.add_error("Maximum daily dose must be greater than 0")

    if min_hours is not None and min_hours < 1:
        result.add_error("Minimum hours between doses must be at least 1 hour")

    if start_date and end_date and end_date < start_date:
        result.add_error("End date cannot be before start date")

    if start_date and start_date > today:
        result.add_error("Start date cannot be in the future")

    if data.get('is_anticoagulant'):
        if data.get('requires_inr_monitoring'):
            if min_hours is not None and min_hours < ANTICOAGULANT_MIN_HOURS:
                result.add_error(
                    f"Blood thinners require minimum {ANTICOAGULANT_MIN_HOURS} hours between doses for safety"
                )
            if max_daily is not None and max_daily > ANTICOAGULANT_MAX_DAILY_DOSE:
                result.add_error(
                    f"Blood thinner daily dose exceeds safe maximum "
                    f"({format_dose(ANTICOAGULANT_MAX_DAILY_DOSE, 'mg')}). Consult healthcare provider."
                )
        else:
            result.add_warning(
                "Blood thinners typically require INR monitoring. Please verify with healthcare provider."
            )

    if inr_min is not None and inr_max is not None:
        if inr_min < INR_TARGET_FLOOR or inr_max > INR_TARGET_CEILING:
            result.add_error(f"INR target range must be between {INR_TARGET_FLOOR} and {INR_TARGET_CEILING}")
        if inr_min >= inr_max:
            result.add_error("INR target minimum must be less than maximum")

    if (data.get('medication_type') == Medication.MedicationType.VITAMIN_K_ANTAGONIST
            and dosage is not None and dosage > VKA_MAX_SINGLE_DOSE):
        result.add_error("Warfarin dosage above 20mg requires special attention")

    return result


def _is_vitamin_k_antagonist(medication: Medication) -> bool:
    if medication.medication_type == Medication.MedicationType.VITAMIN_K_ANTAGONIST:
        return True
    return 'warfarin' in (medication.name or '').lower()


def validate_pattern_request(medication: Medication, pattern_sequence: List, start_date: date,
                             end_date: Optional[date] = None, notes: str = '',
                             today: Optional[date] = None) -> SafetyCheckResult:
    """
    Validate a new dosage pattern before it is stored.

    Errors cover sequence length and dose bounds, date ordering and
    medication-specific limits. Backdating beyond a week, single-value and
    unusually long patterns only produce warnings.
    """
    today = today or timezone.localdate()
    result = SafetyCheckResult()
    doses = [to_decimal(dose) for dose in (pattern_sequence or [])]

    if not doses:
        result.add_error("Pattern must contain at least one dosage value")
    elif len(doses) > PATTERN_MAX_LENGTH:
        result.add_error(f"Pattern cannot exceed {PATTERN_MAX_LENGTH} dosages")

    if any(dose < PATTERN_MIN_DOSE or dose > PATTERN_MAX_DOSE for dose in doses):
        result.add_error(f"Each dosage must be between {PATTERN_MIN_DOSE} and {PATTERN_MAX_DOSE}")

    if start_date < years_before(today):
        result.add_error("Start date cannot be more than 1 year in the past")
    elif start_date < today - timedelta(days=PATTERN_BACKDATE_WARNING_DAYS):
        result.add_warning(
            "Pattern start date is more than 7 days in the past. "
            "This will affect historical medication logs. Please confirm this is intentional."
        )

    if end_date is not None and end_date < start_date:
        result.add_error("End date must be on or after the start date")

    if notes and len(notes) > PATTERN_NOTES_MAX_LENGTH:
        result.add_error(f"Notes cannot exceed {PATTERN_NOTES_MAX_LENGTH} characters")

    if len(doses) == 1:
        result.add_warning(
            "Pattern contains only one dosage value. Consider using a fixed daily dose instead of a pattern."
        )
    elif len(doses) > PATTERN_LONG_WARNING_LENGTH:
        result.add_warning(f"Pattern is unusually long ({len(doses)} days). Please verify this is correct.")

    if doses and _is_vitamin_k_antagonist(medication):
        highest = max(doses)
        if highest > VKA_MAX_SINGLE_DOSE:
            result.add_error(
                f"Warfarin dosage should not exceed 20mg. Pattern contains {format_dose(highest, 'mg')}. "
                "Please verify with healthcare provider."
            )

    return result
