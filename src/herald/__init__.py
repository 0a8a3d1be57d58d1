"""
herald - at-least-once domain event dispatch.

A durable event queue with an atomic claim, a recurring job scheduler with
per-entry retry and dead-letter, and HMAC-signed webhook fanout, all
coordinated through one shared SQLite database.
"""

__version__ = "0.1.0"
