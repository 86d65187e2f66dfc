from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='BusinessRuleRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When this record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='When this record was last modified')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional metadata for this record')),
                ('rule_id', models.CharField(help_text='Stable rule identifier', max_length=100, unique=True)),
                ('name', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('category', models.CharField(choices=[('task_assignment', 'Task Assignment'), ('escalation', 'Escalation'), ('deadline_management', 'Deadline Management'), ('workload_balance', 'Workload Balance'), ('compliance', 'Compliance'), ('quality_control', 'Quality Control')], db_index=True, max_length=30)),
                ('priority', models.IntegerField(db_index=True, default=100, help_text='Evaluation order, lowest first')),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('conditions', models.JSONField(blank=True, default=list)),
                ('actions', models.JSONField(blank=True, default=list)),
                ('trigger_count', models.PositiveIntegerField(default=0)),
                ('success_count', models.PositiveIntegerField(default=0)),
                ('failure_count', models.PositiveIntegerField(default=0)),
                ('total_execution_time', models.FloatField(default=0.0, help_text='Sum of evaluation times in milliseconds')),
                ('last_triggered', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Business Rule',
                'verbose_name_plural': 'Business Rules',
                'db_table': 'workflows_business_rule',
                'ordering': ['priority', 'rule_id'],
                'indexes': [
                    models.Index(fields=['is_active', 'priority'], name='workflows_rule_active_idx'),
                ],
            },
        ),
    ]
