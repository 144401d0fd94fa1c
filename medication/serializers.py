from decimal import Decimal

from django.conf import settings
from django.utils import timezone
from rest_framework import serializers

from .models import Medication, DosagePattern, MedicationLog
from .services.dosage import resolve_dose
from .services.safety import MEDICATION_SAFETY_FIELDS, validate_medication_safety, validate_pattern_request
from .utils import format_dose


class DosagePatternSerializer(serializers.ModelSerializer):
    """
    Read-only view of a dosage pattern.

    The raw sequence is not exposed; clients get the display form.
    """
    display_pattern = serializers.SerializerMethodField()
    pattern_length = serializers.IntegerField(read_only=True)
    average_dose = serializers.SerializerMethodField()
    is_active = serializers.SerializerMethodField()

    class Meta:
        model = DosagePattern
        fields = (
            'id', 'medication', 'display_pattern', 'pattern_length', 'average_dose',
            'start_date', 'end_date', 'is_active', 'notes', 'created_at', 'updated_at',
        )
        read_only_fields = fields

    def get_display_pattern(self, obj):
        return obj.display_pattern()

    def get_average_dose(self, obj):
        return format_dose(obj.average_dose)

    def get_is_active(self, obj):
        return obj.end_date is None


class DosagePatternCreateSerializer(serializers.Serializer):
    """Request body for creating a dosage pattern on a medication."""
    pattern_sequence = serializers.ListField(
        child=serializers.DecimalField(max_digits=10, decimal_places=3),
        allow_empty=False,
    )
    start_date = serializers.DateField()
    end_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    close_previous_pattern = serializers.BooleanField(required=False, default=True)

    def validate(self, data):
        medication = self.context['medication']
        result = validate_pattern_request(
            medication,
            data['pattern_sequence'],
            data['start_date'],
            end_date=data.get('end_date'),
            notes=data.get('notes', ''),
        )
        if not result.is_valid:
            raise serializers.ValidationError({'pattern_sequence': result.errors})
        data['warnings'] = result.warnings
        return data


class PatternHistoryQuerySerializer(serializers.Serializer):
    active_only = serializers.BooleanField(required=False, default=False)
    limit = serializers.IntegerField(required=False, default=10)
    offset = serializers.IntegerField(required=False, default=0, min_value=0)

    def validate_limit(self, value):
        return max(1, min(value, 100))


class ScheduleQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    days = serializers.IntegerField(required=False)
    include_pattern_changes = serializers.BooleanField(required=False, default=True)

    def validate(self, data):
        data.setdefault('start_date', timezone.localdate())
        data.setdefault('days', getattr(settings, 'SCHEDULE_DEFAULT_DAYS', 14))
        return data


class MedicationSerializer(serializers.ModelSerializer):
    """Serializer for medications with their current pattern summary."""
    medication_type_display = serializers.CharField(source='get_medication_type_display', read_only=True)
    frequency_display = serializers.CharField(source='get_frequency_display', read_only=True)
    active_pattern = serializers.SerializerMethodField()
    has_pattern_schedule = serializers.BooleanField(read_only=True)
    todays_dose = serializers.SerializerMethodField()
    warnings = serializers.SerializerMethodField()

    class Meta:
        model = Medication
        fields = (
            'id', 'patient', 'name', 'generic_name', 'medication_type', 'medication_type_display',
            'dosage', 'dosage_unit', 'is_anticoagulant', 'max_daily_dose', 'min_hours_between_doses',
            'requires_inr_monitoring', 'inr_target_min', 'inr_target_max',
            'frequency', 'frequency_display', 'custom_frequency', 'scheduled_times',
            'start_date', 'end_date', 'active', 'instructions', 'notes',
            'active_pattern', 'has_pattern_schedule', 'todays_dose', 'warnings',
            'created_at', 'updated_at',
        )
        read_only_fields = ('patient', 'created_at', 'updated_at')

    def get_active_pattern(self, obj):
        pattern = obj.active_pattern
        if pattern is None:
            return None
        return DosagePatternSerializer(pattern).data

    def get_todays_dose(self, obj):
        return resolve_dose(obj, timezone.localdate()).dose

    def get_warnings(self, obj):
        return getattr(self, '_safety_warnings', [])

    def validate_scheduled_times(self, value):
        for entry in value:
            try:
                hours, minutes = str(entry).split(':')
                valid = 0 <= int(hours) < 24 and 0 <= int(minutes) < 60
            except ValueError:
                valid = False
            if not valid:
                raise serializers.ValidationError(f"Invalid time '{entry}', expected HH:MM")
        return value

    def validate(self, data):
        merged = {
            name: data.get(name, getattr(self.instance, name, None))
            for name in MEDICATION_SAFETY_FIELDS
        }
        if self.instance is None:
            merged['is_anticoagulant'] = data.get('is_anticoagulant', True)
            merged['requires_inr_monitoring'] = data.get('requires_inr_monitoring', False)
        elif 'start_date' not in data:
            # An existing course keeps its start date
            merged['start_date'] = None

        result = validate_medication_safety(merged)
        if not result.is_valid:
            raise serializers.ValidationError({'non_field_errors': result.errors})
        self._safety_warnings = result.warnings
        return data

    def create(self, validated_data):
        request = self.context.get('request')
        if request and hasattr(request, 'user'):
            validated_data['patient'] = request.user
        return super().create(validated_data)


class MedicationLogSerializer(serializers.ModelSerializer):
    """Serializer for dose logs; snapshot and variance fields are read-only."""
    medication_details = serializers.SerializerMethodField()
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    time_difference = serializers.CharField(source='time_difference_description', read_only=True)
    adherence_score = serializers.FloatField(read_only=True)
    pattern_display = serializers.SerializerMethodField()

    class Meta:
        model = MedicationLog
        fields = (
            'id', 'medication', 'medication_details', 'patient', 'scheduled_time', 'actual_time',
            'status', 'status_display', 'time_variance_minutes', 'time_difference',
            'actual_dose', 'actual_dose_unit', 'expected_dose', 'pattern_day', 'pattern_display',
            'variance_amount', 'variance_percentage', 'has_variance',
            'safety_advisory', 'safety_notes', 'adherence_score',
            'reason', 'side_effects', 'notes', 'taken_with_food', 'food_details',
            'entry_method', 'entry_device', 'created_at', 'updated_at',
        )
        read_only_fields = (
            'medication', 'patient', 'scheduled_time', 'time_variance_minutes',
            'expected_dose', 'pattern_day', 'variance_amount', 'variance_percentage', 'has_variance',
            'safety_advisory', 'safety_notes', 'entry_method', 'entry_device', 'created_at', 'updated_at',
        )

    def get_medication_details(self, obj):
        return {
            'id': obj.medication.id,
            'name': obj.medication.name,
            'dosage_unit': obj.medication.dosage_unit,
        }

    def get_pattern_display(self, obj):
        if obj.dosage_pattern is None:
            return None
        return obj.dosage_pattern.display_pattern()

    def validate_actual_dose(self, value):
        if value is not None and value <= Decimal('0'):
            raise serializers.ValidationError("Dose must be greater than 0")
        return value


class MedicationLogCreateSerializer(serializers.Serializer):
    """Request body for logging a dose."""
    medication = serializers.PrimaryKeyRelatedField(queryset=Medication.objects.all())
    status = serializers.ChoiceField(choices=MedicationLog.Status.choices, default=MedicationLog.Status.TAKEN)
    scheduled_time = serializers.DateTimeField(required=False)
    actual_time = serializers.DateTimeField(required=False)
    actual_dose = serializers.DecimalField(max_digits=10, decimal_places=3, required=False)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)
    side_effects = serializers.CharField(required=False, allow_blank=True, max_length=500)
    notes = serializers.CharField(required=False, allow_blank=True)
    taken_with_food = serializers.BooleanField(required=False, allow_null=True)
    food_details = serializers.CharField(required=False, allow_blank=True, max_length=200)
    entry_method = serializers.ChoiceField(
        choices=MedicationLog.EntryMethod.choices, default=MedicationLog.EntryMethod.MANUAL
    )
    entry_device = serializers.CharField(required=False, allow_blank=True, max_length=100)

    def validate_medication(self, value):
        request = self.context.get('request')
        if request and not request.user.is_staff and value.patient_id != request.user.id:
            raise serializers.ValidationError("Medication not found.")
        if not value.active:
            raise serializers.ValidationError("Cannot log doses for an inactive medication.")
        return value

    def validate_actual_dose(self, value):
        if value <= Decimal('0'):
            raise serializers.ValidationError("Dose must be greater than 0")
        return value

    def validate(self, data):
        if data['status'] == MedicationLog.Status.PARTIALLY_TAKEN and data.get('actual_dose') is None:
            raise serializers.ValidationError(
                {'actual_dose': "Actual dose is required when a dose is partially taken."}
            )
        return data
