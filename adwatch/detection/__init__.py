"""
Anomaly detection and alert handling for the alert engine.

This module contains the detectors, the priority classifier, alert
deduplication, dispatch to notification channels, batch orchestration,
operator lifecycle actions and maintenance jobs.

Components:
    detectors: The six campaign anomaly detectors
    priority: classify_priority
    deduplicator: AlertDeduplicator for create-or-refresh upserts
    dispatcher: AlertDispatcher for realtime, email and chat delivery
    orchestrator: AlertOrchestrator for per-campaign and batch runs
    lifecycle: AlertLifecycleManager for operator actions
    maintenance: AlertMaintenance for retention cleanup and digests

Example:
    >>> from adwatch.detection import create_dispatcher, create_orchestrator
    >>>
    >>> dispatcher = create_dispatcher(store, publisher, email_sender, chat_poster)
    >>> orchestrator = create_orchestrator(provider, source, store, dispatcher)
    >>> summary = await orchestrator.run_batch_analysis()
"""

from adwatch.detection.priority import classify_priority
from adwatch.detection.detectors import (
    ALL_DETECTORS,
    CRITICAL_PASS_DETECTORS,
    BudgetLossDetector,
    BurnRateDetector,
    CpaHighDetector,
    CtrDeclineDetector,
    DetectionContext,
    Detector,
    RankLossDetector,
    RoasDropDetector,
    pct_change,
    run_detectors,
)
from adwatch.detection.deduplicator import AlertDeduplicator
from adwatch.detection.dispatcher import AlertDispatcher, create_dispatcher
from adwatch.detection.orchestrator import AlertOrchestrator, create_orchestrator
from adwatch.detection.lifecycle import AlertLifecycleManager
from adwatch.detection.maintenance import AlertMaintenance, DigestSummary

__all__ = [
    # Priority
    "classify_priority",
    # Detectors
    "Detector",
    "DetectionContext",
    "RoasDropDetector",
    "CpaHighDetector",
    "BudgetLossDetector",
    "RankLossDetector",
    "CtrDeclineDetector",
    "BurnRateDetector",
    "ALL_DETECTORS",
    "CRITICAL_PASS_DETECTORS",
    "pct_change",
    "run_detectors",
    # Deduplicator
    "AlertDeduplicator",
    # Dispatcher
    "AlertDispatcher",
    "create_dispatcher",
    # Orchestrator
    "AlertOrchestrator",
    "create_orchestrator",
    # Lifecycle
    "AlertLifecycleManager",
    # Maintenance
    "AlertMaintenance",
    "DigestSummary",
]
