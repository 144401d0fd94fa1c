from decimal import Decimal

from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Medication',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('generic_name', models.CharField(blank=True, max_length=100)),
                ('medication_type', models.CharField(choices=[('vka', 'Vitamin K Antagonist'), ('doac', 'Direct Oral Anticoagulant'), ('heparin', 'Heparin'), ('lmwh', 'Low Molecular Weight Heparin'), ('antiplatelet', 'Antiplatelet'), ('other', 'Other')], default='vka', max_length=20)),
                ('dosage', models.DecimalField(decimal_places=3, help_text='Fixed dose used when no dosage pattern applies', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.1')), django.core.validators.MaxValueValidator(Decimal('1000'))])),
                ('dosage_unit', models.CharField(default='mg', max_length=20)),
                ('is_anticoagulant', models.BooleanField(default=True)),
                ('max_daily_dose', models.DecimalField(decimal_places=3, max_digits=10)),
                ('min_hours_between_doses', models.PositiveSmallIntegerField(default=12, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(168)])),
                ('requires_inr_monitoring', models.BooleanField(default=False)),
                ('inr_target_min', models.DecimalField(blank=True, decimal_places=1, max_digits=3, null=True)),
                ('inr_target_max', models.DecimalField(blank=True, decimal_places=1, max_digits=3, null=True)),
                ('frequency', models.CharField(choices=[('once_daily', 'Once Daily'), ('twice_daily', 'Twice Daily'), ('three_times_daily', 'Three Times Daily'), ('four_times_daily', 'Four Times Daily'), ('every_other_day', 'Every Other Day'), ('weekly', 'Weekly'), ('as_needed', 'As Needed'), ('custom', 'Custom')], default='once_daily', max_length=20)),
                ('custom_frequency', models.CharField(blank=True, max_length=200)),
                ('scheduled_times', models.JSONField(blank=True, default=list, help_text='List of HH:MM dose times')),
                ('start_date', models.DateField()),
                ('end_date', models.DateField(blank=True, null=True)),
                ('active', models.BooleanField(default=True)),
                ('instructions', models.TextField(blank=True)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='medications', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Medication',
                'verbose_name_plural': 'Medications',
                'ordering': ['-updated_at'],
            },
        ),
        migrations.CreateModel(
            name='DosagePattern',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pattern_sequence', models.JSONField(default=list)),
                ('start_date', models.DateField()),
                ('end_date', models.DateField(blank=True, null=True)),
                ('notes', models.CharField(blank=True, max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('medication', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='dosage_patterns', to='medication.medication')),
            ],
            options={
                'verbose_name': 'Dosage Pattern',
                'verbose_name_plural': 'Dosage Patterns',
                'ordering': ['-start_date'],
            },
        ),
        migrations.CreateModel(
            name='MedicationLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('scheduled_time', models.DateTimeField()),
                ('actual_time', models.DateTimeField(blank=True, null=True)),
                ('status', models.CharField(choices=[('scheduled', 'Scheduled'), ('taken', 'Taken'), ('skipped', 'Skipped'), ('partially_taken', 'Partially Taken'), ('rescheduled', 'Rescheduled')], default='scheduled', max_length=20)),
                ('time_variance_minutes', models.IntegerField(default=0)),
                ('actual_dose', models.DecimalField(blank=True, decimal_places=3, max_digits=10, null=True)),
                ('actual_dose_unit', models.CharField(blank=True, max_length=20)),
                ('expected_dose', models.DecimalField(blank=True, decimal_places=3, max_digits=10, null=True)),
                ('pattern_day', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('variance_amount', models.DecimalField(blank=True, decimal_places=3, max_digits=10, null=True)),
                ('variance_percentage', models.DecimalField(blank=True, decimal_places=2, max_digits=9, null=True)),
                ('has_variance', models.BooleanField(default=False)),
                ('safety_advisory', models.BooleanField(default=False, help_text='Accepted inside the minimum-interval grace window')),
                ('safety_notes', models.TextField(blank=True)),
                ('reason', models.CharField(blank=True, max_length=500)),
                ('side_effects', models.CharField(blank=True, max_length=500)),
                ('notes', models.TextField(blank=True)),
                ('taken_with_food', models.BooleanField(blank=True, null=True)),
                ('food_details', models.CharField(blank=True, max_length=200)),
                ('entry_method', models.CharField(choices=[('manual', 'Manual'), ('automatic', 'Automatic'), ('provider', 'Provider'), ('import', 'Import'), ('voice', 'Voice')], default='manual', max_length=20)),
                ('entry_device', models.CharField(blank=True, max_length=100)),
                ('is_deleted', models.BooleanField(default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('dosage_pattern', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='logs', to='medication.dosagepattern')),
                ('medication', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='logs', to='medication.medication')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='medication_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Medication Log',
                'verbose_name_plural': 'Medication Logs',
                'ordering': ['-scheduled_time'],
            },
        ),
        migrations.AddIndex(
            model_name='dosagepattern',
            index=models.Index(fields=['medication', 'start_date'], name='dosage_pattern_med_start_idx'),
        ),
        migrations.AddConstraint(
            model_name='dosagepattern',
            constraint=models.UniqueConstraint(condition=models.Q(('end_date__isnull', True)), fields=('medication',), name='single_open_dosage_pattern'),
        ),
        migrations.AddIndex(
            model_name='medicationlog',
            index=models.Index(fields=['medication', 'status', 'actual_time'], name='med_log_status_time_idx'),
        ),
    ]
