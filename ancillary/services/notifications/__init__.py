"""
Notification service package initialization.
"""
