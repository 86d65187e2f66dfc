"""
Tasks application.

Provides the task scheduling engine (conflicts, reminders, workload,
recurrence, optimization) and the composite task priority scorer.
"""
