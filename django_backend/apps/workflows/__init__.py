"""
Workflows application.

Provides the weighted condition/action business rule engine, template
driven task generation and the orchestrator that sequences case phase
transitions, rule evaluation, scheduling and priority scoring.
"""
