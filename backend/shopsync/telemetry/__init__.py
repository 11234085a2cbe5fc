"""
Telemetry Module
================

Observability for the shopsync API and worker processes.

Components:
- sentry.py: Error tracking

Environment Variables:
- SENTRY_DSN: Sentry project DSN

Usage:
    from shopsync.telemetry import init_sentry, capture_exception
"""

from shopsync.telemetry.sentry import (
    init_sentry,
    capture_exception,
)


__all__ = [
    "init_sentry",
    "capture_exception",
]
