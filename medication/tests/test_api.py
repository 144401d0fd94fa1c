from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from medication.models import Medication, DosagePattern, MedicationLog
from medication.services.patterns import add_dosage_pattern

pytestmark = pytest.mark.django_db


def medication_url(medication, suffix=''):
    return f"/api/medications/{medication.id}/{suffix}"


class TestMedicationEndpoints:
    def payload(self, **overrides):
        data = {
            'name': 'Warfarin',
            'medication_type': 'vka',
            'dosage': '5',
            'max_daily_dose': '10',
            'min_hours_between_doses': 12,
            'requires_inr_monitoring': True,
            'inr_target_min': '2.0',
            'inr_target_max': '3.0',
            'start_date': (timezone.localdate() - timedelta(days=7)).isoformat(),
            'scheduled_times': ['18:00'],
        }
        data.update(overrides)
        return data

    def test_create_assigns_patient(self, api_client, user):
        response = api_client.post('/api/medications/', self.payload(), format='json')

        assert response.status_code == 201
        medication = Medication.objects.get(id=response.data['id'])
        assert medication.patient == user
        assert response.data['todays_dose'] == Decimal('5')
        assert response.data['warnings'] == []

    def test_unmonitored_anticoagulant_is_created_with_warning(self, api_client):
        response = api_client.post(
            '/api/medications/', self.payload(requires_inr_monitoring=False), format='json'
        )

        assert response.status_code == 201
        assert response.data['warnings']

    def test_unsafe_configuration_is_rejected(self, api_client):
        response = api_client.post(
            '/api/medications/', self.payload(min_hours_between_doses=6), format='json'
        )

        assert response.status_code == 400
        assert "12 hours" in str(response.data)

    def test_invalid_dose_time(self, api_client):
        response = api_client.post('/api/medications/', self.payload(scheduled_times=['25:00']), format='json')
        assert response.status_code == 400

    def test_other_patients_medications_are_hidden(self, medication, other_user):
        client = APIClient()
        client.force_authenticate(user=other_user)

        assert client.get(medication_url(medication)).status_code == 404
        assert client.get('/api/medications/').data['count'] == 0

    def test_delete_deactivates(self, api_client, medication):
        response = api_client.delete(medication_url(medication))

        assert response.status_code == 200
        medication.refresh_from_db()
        assert medication.active is False

    def test_requires_authentication(self, medication):
        assert APIClient().get('/api/medications/').status_code in (401, 403)


class TestPatternEndpoints:
    def test_create_pattern_closes_previous(self, api_client, medication):
        today = timezone.localdate()
        first = api_client.post(
            medication_url(medication, 'patterns/'),
            {'pattern_sequence': [4, 4, 3], 'start_date': (today - timedelta(days=3)).isoformat()},
            format='json',
        )
        second = api_client.post(
            medication_url(medication, 'patterns/'),
            {'pattern_sequence': [5, 4], 'start_date': today.isoformat(), 'notes': 'INR 1.8'},
            format='json',
        )

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.data['closed_pattern']['id'] == first.data['pattern']['id']
        assert second.data['closed_pattern']['end_date'] == (today - timedelta(days=1)).isoformat()
        assert second.data['pattern']['display_pattern'] == "5mg, 4mg (2-day cycle)"
        assert 'pattern_sequence' not in second.data['pattern']

    def test_overlap_without_closing_is_rejected(self, api_client, medication):
        today = timezone.localdate()
        add_dosage_pattern(medication, [4], today - timedelta(days=3))

        response = api_client.post(
            medication_url(medication, 'patterns/'),
            {'pattern_sequence': [3], 'start_date': today.isoformat(), 'close_previous_pattern': False},
            format='json',
        )

        assert response.status_code == 400
        assert 'already exists' in response.data['detail']
        assert DosagePattern.objects.filter(medication=medication).count() == 1

    def test_invalid_doses_are_rejected(self, api_client, medication):
        response = api_client.post(
            medication_url(medication, 'patterns/'),
            {'pattern_sequence': [4, 25], 'start_date': timezone.localdate().isoformat()},
            format='json',
        )

        assert response.status_code == 400
        assert 'pattern_sequence' in response.data

    def test_history_is_paginated(self, api_client, medication):
        start = medication.start_date
        add_dosage_pattern(medication, [4], start)
        add_dosage_pattern(medication, [3], start + timedelta(days=10))
        add_dosage_pattern(medication, [5], start + timedelta(days=20))

        response = api_client.get(medication_url(medication, 'patterns/'), {'limit': 500, 'offset': 1})

        assert response.status_code == 200
        assert response.data['count'] == 3
        assert response.data['limit'] == 100
        assert len(response.data['results']) == 2

        active = api_client.get(medication_url(medication, 'patterns/'), {'active_only': 'true'})
        assert active.data['count'] == 1

    def test_active_pattern(self, api_client, medication):
        assert api_client.get(medication_url(medication, 'active_pattern/')).status_code == 404

        add_dosage_pattern(medication, [4, 3], timezone.localdate())
        response = api_client.get(medication_url(medication, 'active_pattern/'))

        assert response.status_code == 200
        assert response.data['todays_dose'] == Decimal('4')
        assert response.data['pattern_day'] == 1


class TestScheduleEndpoints:
    def test_schedule(self, api_client, medication):
        today = timezone.localdate()
        add_dosage_pattern(medication, [4, 4, 3, 4, 3, 3], today)

        response = api_client.get(
            medication_url(medication, 'schedule/'), {'start_date': today.isoformat(), 'days': 28}
        )

        assert response.status_code == 200
        assert len(response.data['schedule']) == 28
        assert response.data['summary']['pattern_cycles'] == Decimal('4.67')
        assert response.data['schedule'][0]['is_pattern_change'] is True

    def test_schedule_defaults_to_two_weeks(self, api_client, medication):
        response = api_client.get(medication_url(medication, 'schedule/'))

        assert response.status_code == 200
        assert response.data['total_days'] == 14
        assert response.data['current_pattern']['display_pattern'] == "5mg daily"

    def test_schedule_length_is_bounded(self, api_client, medication):
        response = api_client.get(medication_url(medication, 'schedule/'), {'days': 400})

        assert response.status_code == 400
        assert response.data['detail'] == "Days must be between 1 and 365"

    def test_expected_dose(self, api_client, medication):
        target = medication.start_date - timedelta(days=1)
        response = api_client.get(medication_url(medication, 'expected_dose/'), {'date': target.isoformat()})

        assert response.status_code == 200
        assert response.data['dose'] is None
        assert response.data['status'] == 'not_applicable'

        assert api_client.get(medication_url(medication, 'expected_dose/'), {'date': 'soon'}).status_code == 400


class TestLogEndpoints:
    def log(self, client, medication, hours_ago, dose='3'):
        return client.post('/api/logs/', {
            'medication': medication.id,
            'actual_time': (timezone.now() - timedelta(hours=hours_ago)).isoformat(),
            'actual_dose': dose,
        }, format='json')

    def test_create_log(self, api_client, medication):
        response = self.log(api_client, medication, hours_ago=1)

        assert response.status_code == 201
        assert response.data['expected_dose'] == Decimal('5')
        assert response.data['has_variance'] is True
        assert response.data['warnings'] == []

    def test_too_soon_is_rejected(self, api_client, medication):
        self.log(api_client, medication, hours_ago=14)
        response = self.log(api_client, medication, hours_ago=8)

        assert response.status_code == 400
        assert response.data['errors'][0].startswith("Too soon for next dose")

    def test_non_positive_dose_is_rejected(self, api_client, medication):
        response = self.log(api_client, medication, hours_ago=1, dose='0')
        assert response.status_code == 400

    def test_cannot_log_for_other_patient(self, medication, other_user):
        client = APIClient()
        client.force_authenticate(user=other_user)

        response = self.log(client, medication, hours_ago=1)

        assert response.status_code == 400
        assert MedicationLog.objects.count() == 0

    def test_update_recomputes_variance(self, api_client, medication):
        created = self.log(api_client, medication, hours_ago=1)

        response = api_client.patch(f"/api/logs/{created.data['id']}/", {'actual_dose': '5'}, format='json')

        assert response.status_code == 200
        assert response.data['has_variance'] is False

    def test_delete_is_soft(self, api_client, medication):
        created = self.log(api_client, medication, hours_ago=1)

        response = api_client.delete(f"/api/logs/{created.data['id']}/")

        assert response.status_code == 204
        log = MedicationLog.objects.get(id=created.data['id'])
        assert log.is_deleted
        assert api_client.get('/api/logs/').data['count'] == 0

    def test_list_filters(self, api_client, medication):
        self.log(api_client, medication, hours_ago=1)

        by_medication = api_client.get('/api/logs/', {'medication': medication.id, 'status': 'taken'})
        by_variance = api_client.get('/api/logs/', {'has_variance': 'false'})

        assert by_medication.data['count'] == 1
        assert by_variance.data['count'] == 0
