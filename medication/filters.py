# medication/filters.py
from django_filters import rest_framework as filters

from .models import Medication, MedicationLog


class MedicationFilter(filters.FilterSet):
    patient = filters.NumberFilter(field_name='patient_id')
    is_anticoagulant = filters.BooleanFilter()

    class Meta:
        model = Medication
        fields = ['patient', 'active', 'medication_type', 'frequency', 'is_anticoagulant']


class MedicationLogFilter(filters.FilterSet):
    medication = filters.NumberFilter(field_name='medication_id')
    start_date = filters.DateFilter(field_name='scheduled_time', lookup_expr='date__gte')
    end_date = filters.DateFilter(field_name='scheduled_time', lookup_expr='date__lte')
    has_variance = filters.BooleanFilter()
    safety_advisory = filters.BooleanFilter()

    class Meta:
        model = MedicationLog
        fields = ['medication', 'status', 'start_date', 'end_date', 'has_variance', 'safety_advisory']
