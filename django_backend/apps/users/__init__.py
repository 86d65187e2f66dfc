"""
Users application module.

Holds the roles used across the case workflow and the identity directory
the orchestration core queries for expertise, supervisors and workload.
"""
