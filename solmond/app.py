"""
Main application entry point.

Loads the configuration, wires the gateway, cache, alerting and metrics
collector together, runs collection cycles on a background thread and
serves the metrics over HTTP.
"""

import argparse
import asyncio
import logging
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from prometheus_client import CollectorRegistry

from solmond.config.validator_config import ConfigError, MonitorConfig, load_config
from solmond.connectors.solana_rpc import SolanaRPCGateway
from solmond.monitoring.alert_scheduler import AlertDedupScheduler
from solmond.monitoring.dedup_store import DedupStore, LocalDedupStore, PrometheusDedupSignal
from solmond.monitoring.metrics_endpoint import MetricsEndpoint
from solmond.monitoring.notifications import (
    EmailNotificationChannel, NotificationChannel, NotificationDispatcher,
    SlackNotificationChannel, TelegramNotificationChannel,
)
from solmond.monitoring.ttl_cache import TTLCache
from solmond.monitoring.validator_metrics import AlertPolicy, ValidatorMetricsCollector
from solmond.web_app import MonitorWebApp

logger = structlog.get_logger(__name__)


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def build_channels(config: MonitorConfig) -> Dict[str, NotificationChannel]:
    """Create the notification channels enabled in the config."""
    channels: Dict[str, NotificationChannel] = {}
    enabled = config.enable_alerts
    name = config.validator_details.validator_name

    if enabled.enable_telegram_alerts:
        channels['telegram'] = TelegramNotificationChannel(
            bot_token=config.telegram.tg_bot_token,
            chat_id=config.telegram.tg_chat_id,
            validator_name=name,
        )
    if enabled.enable_email_alerts:
        channels['email'] = EmailNotificationChannel(
            receiver_email=config.sendgrid.receiver_email_address,
            sender_email=config.sendgrid.account_email,
            sender_name=config.sendgrid.sendgrid_account_name or "Solana Monitor",
            api_key=config.sendgrid.sendgrid_token,
            subject=f"Solana validator alert{': ' + name if name else ''}",
        )
    if enabled.enable_slack_alerts:
        channels['slack'] = SlackNotificationChannel(webhook_url=config.slack.webhook_url)

    return channels


def build_dedup_store(config: MonitorConfig) -> DedupStore:
    """Create the dedup store selected by ``dedup.backend``."""
    if config.dedup.backend == "prometheus":
        return PrometheusDedupSignal(config.prometheus.prometheus_address)
    return LocalDedupStore()


def build_alert_policy(config: MonitorConfig) -> AlertPolicy:
    prefs, thresholds = config.alerter_preferences, config.alerting_thresholds
    return AlertPolicy(
        delinquency_alerts=prefs.enabled('node_health_alert'),
        new_epoch_alerts=prefs.enabled('new_epoch_alerts'),
        vote_height_alerts=prefs.enabled('block_diff_alerts'),
        vote_height_threshold=thresholds.block_diff_threshold,
        balance_alerts=prefs.enabled('account_balance_change_alerts'),
        balance_threshold=thresholds.balance_change_threshold,
        epoch_diff_alerts=prefs.enabled('epoch_diff_alerts'),
        epoch_diff_threshold=thresholds.epoch_diff_threshold,
    )


def build_monitor(config: MonitorConfig,
                  registry: Optional[CollectorRegistry] = None,
                  gateway=None) -> MetricsEndpoint:
    """
    Wire every component for one tracked validator.

    Args:
        config: Validated monitor configuration
        registry: Prometheus registry, a fresh one if omitted
        gateway: Chain query gateway, a SolanaRPCGateway from config if omitted

    Returns:
        MetricsEndpoint ready to collect and serve
    """
    registry = registry or CollectorRegistry()
    gateway = gateway or SolanaRPCGateway(config.endpoints.rpc_endpoint, config.endpoints.network_rpc)

    dispatcher = NotificationDispatcher(build_channels(config), registry=registry)
    collector = ValidatorMetricsCollector(
        gateway,
        node_identity=config.validator_details.pub_key,
        vote_identity=config.validator_details.vote_key,
        registry=registry,
        cache=TTLCache(),
        dispatcher=dispatcher,
        policy=build_alert_policy(config),
    )
    collector.attach_scheduler(AlertDedupScheduler(
        config.regular_status_alerts.alert_timings,
        build_dedup_store(config),
        dispatcher,
    ))

    logger.info("Monitor wired",
                validator=config.validator_details.pub_key,
                channels=list(dispatcher.channels),
                dedup_backend=config.dedup.backend)
    return MetricsEndpoint(collector, collection_interval=config.scraper.interval_seconds)


async def run_collection(endpoint: MetricsEndpoint, config: MonitorConfig) -> None:
    """Connect the gateway and run collection cycles until stopped."""
    collector = endpoint.collector
    async with collector.gateway:
        if config.alerter_preferences.enabled('startup_alerts') and collector.dispatcher is not None:
            name = config.validator_details.validator_name or config.validator_details.pub_key
            await collector.dispatcher.dispatch(f"Solana monitoring started for {name}")
        await endpoint.start_continuous_collection()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Solana validator health monitor")
    parser.add_argument('--config', type=Path, default=None, help='Path to config.yaml')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        config = load_config(args.config)
        endpoint = build_monitor(config)
    except (ConfigError, ValueError) as e:
        logger.error("Startup failed", error=str(e))
        return 1

    collection_thread = threading.Thread(
        target=asyncio.run,
        args=(run_collection(endpoint, config),),
        name="solmon-collector",
        daemon=True,
    )
    collection_thread.start()

    host, port = config.prometheus.host_port()
    try:
        MonitorWebApp(endpoint).run(host=host, port=port)
    finally:
        endpoint.stop_continuous_collection()
    return 0


if __name__ == "__main__":
    sys.exit(main())
