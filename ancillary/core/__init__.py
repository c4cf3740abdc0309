"""
Core package for shared utilities.

This module makes the core directory a Python package, enabling proper
import resolution for configuration, logging, and signing helpers shared
across the cancellation engine.
"""
