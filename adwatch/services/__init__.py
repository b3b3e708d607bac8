"""
Service entry points for the alert engine.

Services:
    runner: ServiceRunner base class and logging setup
    alert_engine: Scheduled analysis, critical pass, cleanup and digests
"""

from adwatch.services.runner import ServiceRunner, setup_logging

__all__: list[str] = [
    "ServiceRunner",
    "setup_logging",
]
