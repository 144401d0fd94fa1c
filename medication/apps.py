from django.apps import AppConfig


class MedicationConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'medication'
    verbose_name = 'Anticoagulant Dosing'

    def ready(self):
        """Register signal handlers."""
        import medication.signals  # noqa: F401
