from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .exceptions import InvalidPattern, InvalidArgument
from .utils import to_decimal, format_dose


class Medication(models.Model):
    """
    Prescribed medication for one patient, typically an anticoagulant.

    The flat ``dosage`` is the fallback used whenever no dosage pattern
    covers a date. Medications are deactivated rather than deleted so
    that historical dose logs keep their context.
    """
    class MedicationType(models.TextChoices):
        VITAMIN_K_ANTAGONIST = 'vka', _('Vitamin K Antagonist')
        DOAC = 'doac', _('Direct Oral Anticoagulant')
        HEPARIN = 'heparin', _('Heparin')
        LMWH = 'lmwh', _('Low Molecular Weight Heparin')
        ANTIPLATELET = 'antiplatelet', _('Antiplatelet')
        OTHER = 'other', _('Other')

    class Frequency(models.TextChoices):
        ONCE_DAILY = 'once_daily', _('Once Daily')
        TWICE_DAILY = 'twice_daily', _('Twice Daily')
        THREE_TIMES_DAILY = 'three_times_daily', _('Three Times Daily')
        FOUR_TIMES_DAILY = 'four_times_daily', _('Four Times Daily')
        EVERY_OTHER_DAY = 'every_other_day', _('Every Other Day')
        WEEKLY = 'weekly', _('Weekly')
        AS_NEEDED = 'as_needed', _('As Needed')
        CUSTOM = 'custom', _('Custom')

    # Basic information
    name = models.CharField(max_length=100)
    generic_name = models.CharField(max_length=100, blank=True)
    medication_type = models.CharField(
        max_length=20, choices=MedicationType.choices, default=MedicationType.VITAMIN_K_ANTAGONIST
    )

    # Dosage information
    dosage = models.DecimalField(
        max_digits=10, decimal_places=3,
        validators=[MinValueValidator(Decimal('0.1')), MaxValueValidator(Decimal('1000'))],
        help_text="Fixed dose used when no dosage pattern applies"
    )
    dosage_unit = models.CharField(max_length=20, default='mg')

    # Safety limits
    is_anticoagulant = models.BooleanField(default=True)
    max_daily_dose = models.DecimalField(max_digits=10, decimal_places=3)
    min_hours_between_doses = models.PositiveSmallIntegerField(
        default=12, validators=[MinValueValidator(1), MaxValueValidator(168)]
    )

    # Lab monitoring
    requires_inr_monitoring = models.BooleanField(default=False)
    inr_target_min = models.DecimalField(max_digits=3, decimal_places=1, blank=True, null=True)
    inr_target_max = models.DecimalField(max_digits=3, decimal_places=1, blank=True, null=True)

    # Frequency and timing
    frequency = models.CharField(max_length=20, choices=Frequency.choices, default=Frequency.ONCE_DAILY)
    custom_frequency = models.CharField(max_length=200, blank=True)
    scheduled_times = models.JSONField(default=list, blank=True, help_text="List of HH:MM dose times")

    # Duration
    start_date = models.DateField()
    end_date = models.DateField(blank=True, null=True)
    active = models.BooleanField(default=True)

    # Instructions and notes
    instructions = models.TextField(blank=True)
    notes = models.TextField(blank=True)

    patient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='medications')

    # Meta information
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.display_name()

    def display_name(self):
        return f"{self.name} {format_dose(self.dosage, self.dosage_unit)}"

    def is_currently_valid(self, on_date=None):
        """Active and within its start/end dates on ``on_date`` (default today)."""
        on_date = on_date or timezone.localdate()
        if not self.active or self.start_date > on_date:
            return False
        return self.end_date is None or self.end_date >= on_date

    @property
    def active_pattern(self):
        """The open dosage pattern (no end date), if any."""
        open_patterns = [p for p in self.dosage_patterns.all() if p.end_date is None]
        if not open_patterns:
            return None
        return max(open_patterns, key=lambda p: p.start_date)

    @property
    def has_pattern_schedule(self):
        return self.dosage_patterns.exists()

    def clean(self):
        from .services.safety import MEDICATION_SAFETY_FIELDS, validate_medication_safety

        result = validate_medication_safety({
            name: getattr(self, name) for name in MEDICATION_SAFETY_FIELDS
        })
        if not result.is_valid:
            raise ValidationError(result.errors)

    class Meta:
        ordering = ['-updated_at']
        verbose_name = "Medication"
        verbose_name_plural = "Medications"


class DosagePattern(models.Model):
    """
    A repeating dose sequence valid over ``[start_date, end_date]``.

    ``pattern_sequence`` holds the doses in the medication's unit, e.g.
    ``[4, 4, 3, 4, 3, 3]`` for a 6-day cycle. A null ``end_date`` marks the
    currently open pattern; a medication has at most one. Day numbers are
    1-based throughout.
    """
    medication = models.ForeignKey(Medication, on_delete=models.CASCADE, related_name='dosage_patterns')
    pattern_sequence = models.JSONField(default=list)
    start_date = models.DateField()
    end_date = models.DateField(blank=True, null=True)
    notes = models.CharField(max_length=500, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.medication.name}: {self.display_pattern()}"

    @property
    def doses(self):
        return [to_decimal(value) for value in (self.pattern_sequence or [])]

    @property
    def pattern_length(self):
        return len(self.pattern_sequence or [])

    @property
    def average_dose(self):
        doses = self.doses
        if not doses:
            return Decimal('0')
        return sum(doses) / len(doses)

    @property
    def is_open(self):
        return self.end_date is None or self.end_date >= timezone.localdate()

    def covers(self, target_date):
        """Check whether ``target_date`` falls inside this pattern's validity."""
        if target_date < self.start_date:
            return False
        return self.end_date is None or target_date <= self.end_date

    def dose_for_cycle_day(self, day_number):
        """
        Dose for a 1-based day within the cycle; day numbers wrap around.

        For ``[4, 4, 3]``: day 1 -> 4, day 3 -> 3, day 4 -> 4 (cycle restarts).
        """
        doses = self.doses
        if not doses:
            raise InvalidPattern("Pattern sequence is empty")
        if day_number < 1:
            raise InvalidArgument("Day number must be >= 1")
        return doses[(day_number - 1) % len(doses)]

    def dose_for_date(self, target_date):
        """Dose on a calendar date, or None outside the pattern's validity."""
        if not self.covers(target_date):
            return None
        if not self.pattern_length:
            raise InvalidPattern("Pattern sequence is empty")
        days_since_start = (target_date - self.start_date).days
        return self.dose_for_cycle_day((days_since_start % self.pattern_length) + 1)

    def display_pattern(self, unit=None):
        """
        Human readable pattern, e.g. "4mg, 4mg, 3mg (3-day cycle)".

        This is the only form in which a pattern is shown to patients.
        """
        if unit is None:
            try:
                unit = self.medication.dosage_unit
            except Medication.DoesNotExist:
                unit = 'mg'
        if not self.pattern_length:
            return "Empty pattern"
        values = ', '.join(format_dose(dose, unit) for dose in self.doses)
        return f"{values} ({self.pattern_length}-day cycle)"

    class Meta:
        ordering = ['-start_date']
        verbose_name = "Dosage Pattern"
        verbose_name_plural = "Dosage Patterns"
        indexes = [
            models.Index(fields=['medication', 'start_date'], name='dosage_pattern_med_start_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['medication'],
                condition=Q(end_date__isnull=True),
                name='single_open_dosage_pattern',
            ),
        ]


class MedicationLog(models.Model):
    """
    A scheduled or actual dose intake.

    ``expected_dose``, ``dosage_pattern`` and ``pattern_day`` are captured
    when the log is created and never recomputed, so later pattern edits do
    not rewrite adherence history. Variance fields are derived from that
    snapshot on every save.
    """
    class Status(models.TextChoices):
        SCHEDULED = 'scheduled', _('Scheduled')
        TAKEN = 'taken', _('Taken')
        SKIPPED = 'skipped', _('Skipped')
        PARTIALLY_TAKEN = 'partially_taken', _('Partially Taken')
        RESCHEDULED = 'rescheduled', _('Rescheduled')

    class EntryMethod(models.TextChoices):
        MANUAL = 'manual', _('Manual')
        AUTOMATIC = 'automatic', _('Automatic')
        PROVIDER = 'provider', _('Provider')
        IMPORT = 'import', _('Import')
        VOICE = 'voice', _('Voice')

    medication = models.ForeignKey(Medication, on_delete=models.CASCADE, related_name='logs')
    patient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='medication_logs')

    # Timing
    scheduled_time = models.DateTimeField()
    actual_time = models.DateTimeField(blank=True, null=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.SCHEDULED)
    time_variance_minutes = models.IntegerField(default=0)

    # Dose information
    actual_dose = models.DecimalField(max_digits=10, decimal_places=3, blank=True, null=True)
    actual_dose_unit = models.CharField(max_length=20, blank=True)

    # Expected dose snapshot
    expected_dose = models.DecimalField(max_digits=10, decimal_places=3, blank=True, null=True)
    dosage_pattern = models.ForeignKey(
        DosagePattern, on_delete=models.SET_NULL, related_name='logs', blank=True, null=True
    )
    pattern_day = models.PositiveSmallIntegerField(blank=True, null=True)

    # Derived variance
    variance_amount = models.DecimalField(max_digits=10, decimal_places=3, blank=True, null=True)
    variance_percentage = models.DecimalField(max_digits=9, decimal_places=2, blank=True, null=True)
    has_variance = models.BooleanField(default=False)

    # Safety gate outcome
    safety_advisory = models.BooleanField(default=False, help_text="Accepted inside the minimum-interval grace window")
    safety_notes = models.TextField(blank=True)

    # Details
    reason = models.CharField(max_length=500, blank=True)
    side_effects = models.CharField(max_length=500, blank=True)
    notes = models.TextField(blank=True)
    taken_with_food = models.BooleanField(blank=True, null=True)
    food_details = models.CharField(max_length=200, blank=True)
    entry_method = models.CharField(max_length=20, choices=EntryMethod.choices, default=EntryMethod.MANUAL)
    entry_device = models.CharField(max_length=100, blank=True)

    # Soft delete
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.medication.name} - {self.get_status_display()} at {self.actual_time or self.scheduled_time}"

    def clean(self):
        if self.status in (self.Status.TAKEN, self.Status.PARTIALLY_TAKEN) and not self.actual_time:
            raise ValidationError({'actual_time': "Actual time is required when a dose is taken."})
        if self.status == self.Status.PARTIALLY_TAKEN and self.actual_dose is None:
            raise ValidationError({'actual_dose': "Actual dose is required when a dose is partially taken."})

    def is_taken_on_time(self, window_minutes=60):
        if not self.actual_time or self.status != self.Status.TAKEN:
            return False
        return abs((self.actual_time - self.scheduled_time).total_seconds()) / 60 <= window_minutes

    def adherence_score(self):
        if self.status == self.Status.TAKEN:
            return 1.0 if self.is_taken_on_time() else 0.8
        if self.status == self.Status.PARTIALLY_TAKEN:
            return 0.5
        return 0.0

    def time_difference_description(self):
        if not self.actual_time:
            return "Not taken yet" if self.status == self.Status.SCHEDULED else "No time recorded"

        minutes = (self.actual_time - self.scheduled_time).total_seconds() / 60
        abs_minutes = abs(minutes)
        if abs_minutes < 1:
            return "On time"

        direction = "late" if minutes > 0 else "early"
        if abs_minutes < 60:
            return f"{int(abs_minutes)} minutes {direction}"

        hours = int(abs_minutes // 60)
        remainder = int(abs_minutes % 60)
        if remainder == 0:
            return f"{hours} hour{'s' if hours > 1 else ''} {direction}"
        return f"{hours}h {remainder}m {direction}"

    def mark_taken(self, actual_dose=None, notes=None, actual_time=None):
        self.status = self.Status.TAKEN
        self.actual_time = actual_time or timezone.now()
        if actual_dose is not None:
            self.actual_dose = actual_dose
        if notes is not None:
            self.notes = notes

    def mark_skipped(self, reason):
        self.status = self.Status.SKIPPED
        self.reason = reason

    def soft_delete(self):
        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.save(update_fields=['is_deleted', 'deleted_at', 'updated_at'])

    class Meta:
        ordering = ['-scheduled_time']
        verbose_name = "Medication Log"
        verbose_name_plural = "Medication Logs"
        indexes = [
            models.Index(fields=['medication', 'status', 'actual_time'], name='med_log_status_time_idx'),
        ]
        constraints = [
            # One generated log per dose time; manual entries may share a time
            models.UniqueConstraint(
                fields=['medication', 'scheduled_time'],
                condition=models.Q(is_deleted=False, entry_method='automatic'),
                name='single_generated_log_per_time',
            ),
        ]
