"""End-to-end scenario tests for idempotent execution.

Each scenario drives the orchestrator against the in-memory store and checks
one property of the record lifecycle.
"""
