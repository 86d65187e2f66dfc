"""
Django applications of the case orchestration backend.
"""
