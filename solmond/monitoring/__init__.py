"""
Monitoring module for the Solana validator monitor.

This module provides metrics collection and alerting for:
- Validator vote account state, vote height and vote credits
- Confirmed block time comparison between validator and network
- Scheduled status alerts with dedup, and transition alerts
- Telegram, email and Slack notifications
"""

from .metrics_collector import MetricsCollector
from .validator_metrics import (
    ValidatorMetricsCollector, AlertPolicy, CycleObservation, CycleState, detect_transitions,
)
from .alert_scheduler import AlertDedupScheduler, AlertTickOutcome, is_alert_tick
from .dedup_store import DedupStore, LocalDedupStore, PrometheusDedupSignal
from .ttl_cache import TTLCache, CacheKind
from .notifications import (
    NotificationDispatcher, EmailNotificationChannel, SlackNotificationChannel,
    TelegramNotificationChannel,
)

__all__ = [
    'MetricsCollector',
    'ValidatorMetricsCollector',
    'AlertPolicy',
    'CycleObservation',
    'CycleState',
    'detect_transitions',
    'AlertDedupScheduler',
    'AlertTickOutcome',
    'is_alert_tick',
    'DedupStore',
    'LocalDedupStore',
    'PrometheusDedupSignal',
    'TTLCache',
    'CacheKind',
    'NotificationDispatcher',
    'EmailNotificationChannel',
    'SlackNotificationChannel',
    'TelegramNotificationChannel'
]
