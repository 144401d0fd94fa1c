import logging
from datetime import date

from django.utils import timezone
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import viewsets, status, filters, mixins
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .exceptions import InvalidArgument
from .filters import MedicationFilter, MedicationLogFilter
from .models import Medication, DosagePattern, MedicationLog
from .permissions import IsMedicationOwner
from .serializers import (
    MedicationSerializer, DosagePatternSerializer, DosagePatternCreateSerializer,
    PatternHistoryQuerySerializer, ScheduleQuerySerializer,
    MedicationLogSerializer, MedicationLogCreateSerializer,
)
from .services.dosage import resolve_dose
from .services.dose_records import record_dose, amend_dose_record
from .services.patterns import add_dosage_pattern
from .services.schedule import project_schedule

logger = logging.getLogger(__name__)


def safety_rejection(result):
    return Response(
        {"errors": result.errors, "warnings": result.warnings},
        status=status.HTTP_400_BAD_REQUEST
    )


class MedicationViewSet(viewsets.ModelViewSet):
    """API viewset for medications, their dosage patterns and schedules."""
    queryset = Medication.objects.all()
    serializer_class = MedicationSerializer
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = MedicationFilter
    search_fields = ['name', 'generic_name']
    ordering_fields = ['name', 'start_date', 'end_date', 'created_at', 'updated_at']
    ordering = ['-updated_at']
    permission_classes = [IsAuthenticated, IsMedicationOwner]

    def get_queryset(self):
        user = self.request.user
        queryset = Medication.objects.prefetch_related('dosage_patterns')
        if user.is_staff:
            return queryset
        return queryset.filter(patient=user)

    def destroy(self, request, *args, **kwargs):
        """Deactivate instead of deleting so dose history keeps its medication."""
        medication = self.get_object()
        medication.active = False
        medication.save(update_fields=['active', 'updated_at'])
        logger.info(f"Medication {medication.id} deactivated by user {request.user.id}")
        return Response({"detail": "Medication deactivated"}, status=status.HTTP_200_OK)

    @action(detail=True, methods=['get'])
    def schedule(self, request, pk=None):
        """Project the expected dose for each day of a date range."""
        medication = self.get_object()
        query = ScheduleQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)

        try:
            projection = project_schedule(
                medication,
                query.validated_data['start_date'],
                query.validated_data['days'],
                detect_pattern_changes=query.validated_data['include_pattern_changes'],
            )
        except InvalidArgument as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(projection)

    @action(detail=True, methods=['get', 'post'])
    def patterns(self, request, pk=None):
        """List a medication's pattern history or start a new pattern."""
        medication = self.get_object()

        if request.method == 'POST':
            return self._create_pattern(request, medication)

        query = PatternHistoryQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        active_only = query.validated_data['active_only']
        limit = query.validated_data['limit']
        offset = query.validated_data['offset']

        patterns = DosagePattern.objects.filter(medication=medication).select_related('medication')
        if active_only:
            patterns = patterns.filter(end_date__isnull=True)

        total = patterns.count()
        page = patterns.order_by('-start_date')[offset:offset + limit]

        return Response({
            "count": total,
            "limit": limit,
            "offset": offset,
            "results": DosagePatternSerializer(page, many=True).data,
        })

    def _create_pattern(self, request, medication):
        serializer = DosagePatternCreateSerializer(
            data=request.data, context={'request': request, 'medication': medication}
        )
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            pattern, closed = add_dosage_pattern(
                medication,
                data['pattern_sequence'],
                data['start_date'],
                end_date=data.get('end_date'),
                notes=data.get('notes', ''),
                close_previous=data['close_previous_pattern'],
            )
        except InvalidArgument as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            "pattern": DosagePatternSerializer(pattern).data,
            "closed_pattern": DosagePatternSerializer(closed).data if closed else None,
            "warnings": data['warnings'],
        }, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def active_pattern(self, request, pk=None):
        """The open pattern with today's dose and position in the cycle."""
        medication = self.get_object()
        pattern = medication.active_pattern
        if pattern is None:
            return Response({"detail": "No active dosage pattern"}, status=status.HTTP_404_NOT_FOUND)

        resolved = resolve_dose(medication, timezone.localdate())
        return Response({
            "pattern": DosagePatternSerializer(pattern).data,
            "todays_dose": resolved.dose,
            "todays_status": resolved.status,
            "pattern_day": resolved.pattern_day,
        })

    @action(detail=True, methods=['get'])
    def expected_dose(self, request, pk=None):
        """Expected dose on ``?date=YYYY-MM-DD`` (default today)."""
        medication = self.get_object()
        raw_date = request.query_params.get('date')
        try:
            target_date = date.fromisoformat(raw_date) if raw_date else timezone.localdate()
        except ValueError:
            return Response({"detail": "date must be YYYY-MM-DD"}, status=status.HTTP_400_BAD_REQUEST)

        resolved = resolve_dose(medication, target_date)
        return Response({
            "medication_id": medication.id,
            "date": target_date,
            "dose": resolved.dose,
            "dosage_unit": medication.dosage_unit,
            "status": resolved.status,
            "pattern_id": resolved.pattern.id if resolved.pattern else None,
            "pattern_day": resolved.pattern_day,
        })


class MedicationLogViewSet(mixins.ListModelMixin,
                           mixins.RetrieveModelMixin,
                           mixins.CreateModelMixin,
                           mixins.UpdateModelMixin,
                           mixins.DestroyModelMixin,
                           viewsets.GenericViewSet):
    """API viewset for dose logs; creation and edits pass the safety gate."""
    serializer_class = MedicationLogSerializer
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = MedicationLogFilter
    ordering_fields = ['scheduled_time', 'actual_time', 'created_at']
    ordering = ['-scheduled_time']
    permission_classes = [IsAuthenticated, IsMedicationOwner]

    def get_queryset(self):
        user = self.request.user
        queryset = MedicationLog.objects.filter(is_deleted=False).select_related('medication', 'dosage_pattern')
        if user.is_staff:
            return queryset
        return queryset.filter(patient=user)

    def create(self, request, *args, **kwargs):
        serializer = MedicationLogCreateSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        medication = data.pop('medication')

        log, result = record_dose(medication, medication.patient, **data)
        if log is None:
            return safety_rejection(result)

        response = MedicationLogSerializer(log).data
        response['warnings'] = result.warnings
        return Response(response, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        log = self.get_object()
        serializer = self.get_serializer(log, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)

        updated, result = amend_dose_record(log, **serializer.validated_data)
        if updated is None:
            return safety_rejection(result)

        response = MedicationLogSerializer(updated).data
        response['warnings'] = result.warnings
        return Response(response)

    def perform_destroy(self, instance):
        instance.soft_delete()
        logger.info(f"Medication log {instance.id} deleted by user {self.request.user.id}")
