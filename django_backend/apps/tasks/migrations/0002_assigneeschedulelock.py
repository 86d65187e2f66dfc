from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('tasks', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='AssigneeScheduleLock',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('assigned_to', models.CharField(max_length=64, unique=True)),
            ],
            options={
                'verbose_name': 'Assignee Schedule Lock',
                'verbose_name_plural': 'Assignee Schedule Locks',
                'db_table': 'tasks_assignee_schedule_lock',
            },
        ),
    ]
