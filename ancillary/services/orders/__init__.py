"""
Order service package initialization.

This module makes the order service directory a Python package, grouping the
product state machine, the order store interface, and the order lifecycle
service.
"""
