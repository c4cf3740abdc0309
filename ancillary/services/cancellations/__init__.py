"""
Cancellation service package initialization.

Groups the refund policy evaluator, provider strategies, cancellation
commands with their invoker, and the cancellation orchestrator.
"""
