from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Case',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When this record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='When this record was last modified')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional metadata for this record')),
                ('case_id', models.CharField(help_text='External case identifier', max_length=64, unique=True)),
                ('title', models.CharField(blank=True, help_text='Case title', max_length=255)),
                ('case_type', models.CharField(choices=[('labor_dispute', 'Labor Dispute'), ('medical_malpractice', 'Medical Malpractice'), ('criminal_defense', 'Criminal Defense'), ('divorce_family', 'Divorce & Family'), ('inheritance_dispute', 'Inheritance Dispute'), ('contract_dispute', 'Contract Dispute'), ('administrative_case', 'Administrative Case'), ('demolition_case', 'Demolition Case'), ('special_matters', 'Special Matters')], db_index=True, help_text='Practice area of the case', max_length=32)),
                ('phase', models.CharField(choices=[('intake_risk_assessment', 'Intake & Risk Assessment'), ('pre_proceeding_preparation', 'Pre-Proceeding Preparation'), ('formal_proceedings', 'Formal Proceedings'), ('resolution_post_proceeding', 'Resolution & Post-Proceeding'), ('closure_review_archiving', 'Closure, Review & Archiving')], db_index=True, default='intake_risk_assessment', help_text='Current workflow phase', max_length=40)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('active', 'Active'), ('on_hold', 'On Hold'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], db_index=True, default='draft', help_text='Current lifecycle status', max_length=20)),
                ('version', models.PositiveIntegerField(default=0, help_text='Optimistic concurrency counter, bumped on every transition')),
            ],
            options={
                'verbose_name': 'Case',
                'verbose_name_plural': 'Cases',
                'db_table': 'cases_case',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['case_type', 'phase'], name='cases_type_phase_idx')],
            },
        ),
        migrations.CreateModel(
            name='CaseTransition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When this record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='When this record was last modified')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional metadata for this record')),
                ('from_phase', models.CharField(choices=[('intake_risk_assessment', 'Intake & Risk Assessment'), ('pre_proceeding_preparation', 'Pre-Proceeding Preparation'), ('formal_proceedings', 'Formal Proceedings'), ('resolution_post_proceeding', 'Resolution & Post-Proceeding'), ('closure_review_archiving', 'Closure, Review & Archiving')], max_length=40)),
                ('to_phase', models.CharField(choices=[('intake_risk_assessment', 'Intake & Risk Assessment'), ('pre_proceeding_preparation', 'Pre-Proceeding Preparation'), ('formal_proceedings', 'Formal Proceedings'), ('resolution_post_proceeding', 'Resolution & Post-Proceeding'), ('closure_review_archiving', 'Closure, Review & Archiving')], max_length=40)),
                ('from_status', models.CharField(choices=[('draft', 'Draft'), ('active', 'Active'), ('on_hold', 'On Hold'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], max_length=20)),
                ('to_status', models.CharField(choices=[('draft', 'Draft'), ('active', 'Active'), ('on_hold', 'On Hold'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], max_length=20)),
                ('user_id', models.CharField(help_text='User who requested the transition', max_length=64)),
                ('user_role', models.CharField(choices=[('admin', 'Administrator'), ('attorney', 'Attorney'), ('paralegal', 'Paralegal'), ('assistant', 'Assistant'), ('archivist', 'Archivist')], max_length=20)),
                ('reason', models.TextField(blank=True)),
                ('warnings', models.JSONField(blank=True, default=list)),
                ('case', models.ForeignKey(help_text='Case that moved', on_delete=django.db.models.deletion.CASCADE, related_name='transitions', to='cases.case')),
            ],
            options={
                'verbose_name': 'Case Transition',
                'verbose_name_plural': 'Case Transitions',
                'db_table': 'cases_transition',
                'ordering': ['created_at', 'id'],
            },
        ),
    ]
