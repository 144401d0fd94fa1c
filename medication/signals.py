import logging

from django.db.models.signals import pre_save
from django.dispatch import receiver

from .models import MedicationLog
from .services.dose_records import snapshot_expected_dose, refresh_derived_fields

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=MedicationLog)
def derive_medication_log_fields(sender, instance, raw=False, **kwargs):
    """
    Fill in the expected-dose snapshot on creation and keep variance and
    timing fields in step with the log on every save.
    """
    if raw:
        return

    if instance._state.adding and instance.expected_dose is None:
        resolved = snapshot_expected_dose(instance)
        logger.debug(
            f"Expected dose snapshot for medication {instance.medication_id}: {resolved.dose} ({resolved.status})"
        )

    refresh_derived_fields(instance)
