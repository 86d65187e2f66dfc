"""
Tests for the background jobs.
"""
