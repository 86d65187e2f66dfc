"""
Notifications application.

Builds the notification payloads emitted by the workflow core (generated
tasks, escalations, review requests, reminders) and hands them to a
delivery port. Delivery transports themselves live outside this project.
"""
