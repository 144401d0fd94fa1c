import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'coagtrack.settings')

app = Celery('coagtrack')

# Using a string means the worker doesn't have to serialize the configuration
# object to child processes
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs
app.autodiscover_tasks()

app.conf.beat_schedule = {
    'generate-scheduled-doses': {
        'task': 'medication.tasks.generate_scheduled_doses',
        'schedule': crontab(hour=0, minute=5),  # Daily, shortly after midnight
    },
}

app.conf.task_time_limit = 600
app.conf.task_soft_time_limit = 540

app.conf.result_expires = 3600  # Results expire after 1 hour
