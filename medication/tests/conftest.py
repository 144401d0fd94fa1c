from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from medication.models import Medication

User = get_user_model()


@pytest.fixture
def user(db):
    return User.objects.create_user(username='patient', password='not-a-real-password')


@pytest.fixture
def other_user(db):
    return User.objects.create_user(username='someone-else', password='not-a-real-password')


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def medication(user):
    return Medication.objects.create(
        patient=user,
        name='Warfarin',
        medication_type=Medication.MedicationType.VITAMIN_K_ANTAGONIST,
        dosage=Decimal('5'),
        dosage_unit='mg',
        is_anticoagulant=True,
        max_daily_dose=Decimal('10'),
        min_hours_between_doses=12,
        requires_inr_monitoring=True,
        inr_target_min=Decimal('2.0'),
        inr_target_max=Decimal('3.0'),
        start_date=timezone.localdate() - timedelta(days=30),
    )
