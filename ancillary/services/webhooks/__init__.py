"""
Webhook service package initialization.
"""
