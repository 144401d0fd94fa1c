from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('medication', '0001_initial'),
    ]

    operations = [
        migrations.AddConstraint(
            model_name='medicationlog',
            constraint=models.UniqueConstraint(condition=models.Q(('entry_method', 'automatic'), ('is_deleted', False)), fields=('medication', 'scheduled_time'), name='single_generated_log_per_time'),
        ),
    ]
