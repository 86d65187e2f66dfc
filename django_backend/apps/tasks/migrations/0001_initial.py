from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ScheduledTaskRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When this record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='When this record was last modified')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional metadata for this record')),
                ('schedule_id', models.CharField(help_text='Scheduler entry identifier', max_length=64, unique=True)),
                ('task_id', models.CharField(help_text='Task identifier', max_length=64, unique=True)),
                ('case_id', models.CharField(blank=True, db_index=True, help_text='Case the task belongs to', max_length=64, null=True)),
                ('title', models.CharField(help_text='Task title', max_length=255)),
                ('description', models.TextField(blank=True)),
                ('scheduled_time', models.DateTimeField(db_index=True, help_text='When work on the task is planned')),
                ('due_date', models.DateTimeField(blank=True, db_index=True, help_text='Deadline', null=True)),
                ('priority', models.CharField(choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('urgent', 'Urgent')], db_index=True, default='medium', max_length=20)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('in_progress', 'In Progress'), ('waiting_dependencies', 'Waiting on Dependencies'), ('overdue', 'Overdue'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=30)),
                ('assigned_to', models.CharField(db_index=True, help_text='Assignee user id', max_length=64)),
                ('assigned_by', models.CharField(help_text='User id of whoever scheduled the task', max_length=64)),
                ('escalation_level', models.PositiveSmallIntegerField(default=0)),
                ('recurrence', models.JSONField(blank=True, null=True)),
                ('reminder_settings', models.JSONField(blank=True, null=True)),
                ('reminders', models.JSONField(blank=True, default=list)),
                ('conflicts', models.JSONField(blank=True, default=list)),
                ('dependencies', models.JSONField(blank=True, default=list, help_text='Task ids that must finish first')),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Scheduled Task',
                'verbose_name_plural': 'Scheduled Tasks',
                'db_table': 'tasks_scheduled_task',
                'ordering': ['scheduled_time', 'id'],
                'indexes': [
                    models.Index(fields=['assigned_to', 'status'], name='tasks_assignee_status_idx'),
                    models.Index(fields=['case_id', 'status'], name='tasks_case_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ScheduleEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When this record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='When this record was last modified')),
                ('action', models.CharField(choices=[('task_scheduled', 'Scheduled'), ('task_rescheduled', 'Rescheduled'), ('task_cancelled', 'Cancelled'), ('task_completed', 'Completed'), ('status_changed', 'Status Changed'), ('task_reassigned', 'Reassigned'), ('task_recurred', 'Recurring Occurrence Created'), ('priority_adjusted', 'Priority Adjusted'), ('task_escalated', 'Escalated'), ('dependency_added', 'Dependency Added')], max_length=30)),
                ('task_id', models.CharField(db_index=True, max_length=64)),
                ('user_id', models.CharField(db_index=True, max_length=64)),
                ('timestamp', models.DateTimeField()),
                ('details', models.JSONField(blank=True, default=dict)),
            ],
            options={
                'verbose_name': 'Schedule Event',
                'verbose_name_plural': 'Schedule Events',
                'db_table': 'tasks_schedule_event',
                'ordering': ['-timestamp', '-id'],
            },
        ),
        migrations.CreateModel(
            name='PriorityAdjustment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When this record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='When this record was last modified')),
                ('previous_priority', models.CharField(choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('urgent', 'Urgent')], max_length=20)),
                ('new_priority', models.CharField(choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('urgent', 'Urgent')], max_length=20)),
                ('reason', models.TextField(blank=True)),
                ('adjusted_by', models.CharField(max_length=64)),
                ('task', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='priority_adjustments', to='tasks.scheduledtaskrecord')),
            ],
            options={
                'verbose_name': 'Priority Adjustment',
                'verbose_name_plural': 'Priority Adjustments',
                'db_table': 'tasks_priority_adjustment',
                'ordering': ['created_at', 'id'],
            },
        ),
    ]
