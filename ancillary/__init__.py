"""
Ancillary cancellation engine.

Order/product state machine, provider cancellation commands, bulk
cancellation orchestration, and webhook/notification dispatch for travel
ancillary products (eSIM data plans, airport transfers, lounge passes).
"""

__version__ = "1.0.0"
