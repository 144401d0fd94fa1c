from django.contrib import admin
from django.utils.html import format_html

from .models import Medication, DosagePattern, MedicationLog


class DosagePatternInline(admin.TabularInline):
    """Inline admin for dosage patterns."""
    model = DosagePattern
    extra = 0
    fields = ('pattern_sequence', 'start_date', 'end_date', 'notes')
    ordering = ('-start_date',)


class MedicationLogInline(admin.TabularInline):
    """Inline admin for the most recent dose logs."""
    model = MedicationLog
    extra = 0
    fields = ('scheduled_time', 'actual_time', 'status', 'actual_dose', 'expected_dose', 'has_variance')
    readonly_fields = ('expected_dose', 'has_variance')
    can_delete = False
    max_num = 10
    verbose_name_plural = "Recent Logs"


@admin.register(Medication)
class MedicationAdmin(admin.ModelAdmin):
    """Admin interface for medications."""
    list_display = ('name', 'patient', 'dosage_display', 'frequency', 'medication_type',
                    'is_anticoagulant', 'active', 'start_date')
    list_filter = ('active', 'medication_type', 'frequency', 'is_anticoagulant', 'requires_inr_monitoring')
    search_fields = ('name', 'generic_name', 'patient__username', 'patient__email')
    readonly_fields = ('created_at', 'updated_at')
    date_hierarchy = 'start_date'
    inlines = [DosagePatternInline, MedicationLogInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('patient', 'name', 'generic_name', 'medication_type')
        }),
        ('Dosage and Frequency', {
            'fields': ('dosage', 'dosage_unit', 'frequency', 'custom_frequency', 'scheduled_times')
        }),
        ('Safety Limits', {
            'fields': ('is_anticoagulant', 'max_daily_dose', 'min_hours_between_doses')
        }),
        ('INR Monitoring', {
            'fields': ('requires_inr_monitoring', 'inr_target_min', 'inr_target_max'),
            'classes': ('collapse',),
        }),
        ('Duration', {
            'fields': ('start_date', 'end_date', 'active')
        }),
        ('Instructions', {
            'fields': ('instructions', 'notes'),
        }),
        ('Meta', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    def dosage_display(self, obj):
        return obj.display_name()
    dosage_display.short_description = "Dosage"


@admin.register(DosagePattern)
class DosagePatternAdmin(admin.ModelAdmin):
    """Admin interface for dosage patterns."""
    list_display = ('medication', 'pattern_display', 'start_date', 'end_date', 'open_display')
    list_filter = ('start_date',)
    search_fields = ('medication__name', 'medication__patient__username')
    readonly_fields = ('created_at', 'updated_at')

    def pattern_display(self, obj):
        return obj.display_pattern()
    pattern_display.short_description = "Pattern"

    def open_display(self, obj):
        if obj.end_date is None:
            return format_html('<span style="color: green;">Open</span>')
        return format_html('<span style="color: gray;">Closed</span>')
    open_display.short_description = "Status"


@admin.register(MedicationLog)
class MedicationLogAdmin(admin.ModelAdmin):
    """Admin interface for dose logs."""
    list_display = ('medication', 'patient', 'scheduled_time', 'actual_time', 'status',
                    'actual_dose', 'expected_dose', 'variance_display', 'safety_advisory', 'is_deleted')
    list_filter = ('status', 'has_variance', 'safety_advisory', 'entry_method', 'is_deleted')
    search_fields = ('medication__name', 'patient__username', 'notes')
    date_hierarchy = 'scheduled_time'
    readonly_fields = (
        'expected_dose', 'dosage_pattern', 'pattern_day', 'variance_amount', 'variance_percentage',
        'has_variance', 'time_variance_minutes', 'safety_advisory', 'safety_notes',
        'created_at', 'updated_at', 'deleted_at',
    )

    def variance_display(self, obj):
        if not obj.has_variance:
            return "-"
        return format_html('<span style="color: red;">{} ({}%)</span>', obj.variance_amount, obj.variance_percentage)
    variance_display.short_description = "Variance"
