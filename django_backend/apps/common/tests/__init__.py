"""
Test package for the common application.
"""
