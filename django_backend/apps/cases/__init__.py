"""
Cases application.

Provides the case phase state machine, case persistence with per-case
serialization, and the transition service that is the single writer of
a case's phase and status.
"""
