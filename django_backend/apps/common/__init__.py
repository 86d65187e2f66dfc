"""
Common application module for shared components.

This module provides the exception taxonomy, collaborator ports, settings
access and helpers used across the case orchestration core.
"""
