"""
Pydantic schemas for orders, cancellations, and webhooks.
"""
