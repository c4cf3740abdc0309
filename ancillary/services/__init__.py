"""
Service layer package for the cancellation engine.
"""
