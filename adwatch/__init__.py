"""
Campaign anomaly detection and alert dispatch engine.

Monitors advertising-campaign performance time series, raises
operator-facing alerts when anomaly conditions are met, and delivers them
through realtime, email and chat channels with lifecycle tracking.

This package provides:
- Data models for campaigns, metric snapshots, alerts and run results
- The detector set, priority classifier and deduplicator
- Dispatcher, orchestrator, lifecycle manager and maintenance jobs
- Abstract interfaces for the external collaborators
- Configuration management
- Storage clients for Redis and PostgreSQL
"""

__version__ = "0.1.0"
