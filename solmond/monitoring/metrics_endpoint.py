"""
Metrics endpoint for Prometheus scraping.

Provides the `/metrics` payload Prometheus scrapes and the background
loop that runs a collection cycle at the configured scraper rate.
"""

import asyncio
import logging
from typing import Dict, Any
from flask import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST, CollectorRegistry

from .validator_metrics import ValidatorMetricsCollector


class MetricsEndpoint:
    """
    Metrics endpoint handler for Prometheus scraping.

    Drives the validator collector on a fixed interval and renders the
    registry for the `/metrics` endpoint.
    """

    def __init__(self, collector: ValidatorMetricsCollector, collection_interval: float = 5.0):
        """
        Initialize metrics endpoint.

        Args:
            collector: Validator metrics collector
            collection_interval: Seconds between collection cycles
        """
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self.collector = collector
        self.registry = collector.get_registry()

        # Collection state
        self._last_collection_time = 0.0
        self._collection_interval = 0.0
        self._is_collecting = False
        self.set_collection_interval(collection_interval)

        self.logger.info("Metrics endpoint initialized")

    async def collect_all_metrics(self) -> Dict[str, Any]:
        """
        Run one collection cycle.

        Returns:
            Dictionary containing the cycle's results, empty if the cycle failed
        """
        try:
            result = await self.collector.collect()
            self._last_collection_time = asyncio.get_running_loop().time()
            return result
        except Exception as e:
            self.logger.error(f"Error collecting validator metrics: {e}")
            return {}

    def get_metrics_response(self) -> Response:
        """
        Get the Prometheus metrics response.

        Returns:
            Flask Response with Prometheus metrics data
        """
        try:
            metrics_data = generate_latest(self.registry)

            return Response(
                metrics_data,
                mimetype=CONTENT_TYPE_LATEST,
                headers={
                    'Cache-Control': 'no-cache, no-store, must-revalidate',
                    'Pragma': 'no-cache',
                    'Expires': '0'
                }
            )

        except Exception as e:
            self.logger.error(f"Error generating metrics response: {e}")
            return Response(
                f"# Error generating metrics: {e}\n",
                mimetype=CONTENT_TYPE_LATEST,
                status=500
            )

    async def start_continuous_collection(self) -> None:
        """
        Run collection cycles until stopped.

        Cycles never overlap: the next one starts only after the previous
        one has finished and the interval has elapsed.
        """
        if self._is_collecting:
            self.logger.warning("Continuous collection already running")
            return

        self._is_collecting = True
        self.logger.info("Starting continuous metrics collection")

        try:
            while self._is_collecting:
                await self.collect_all_metrics()
                await asyncio.sleep(self._collection_interval)
        finally:
            self._is_collecting = False

    def stop_continuous_collection(self) -> None:
        """Stop continuous metrics collection."""
        self._is_collecting = False
        self.logger.info("Stopped continuous metrics collection")

    def get_collection_status(self) -> Dict[str, Any]:
        """
        Get the status of metrics collection.

        Returns:
            Dictionary with collection status information
        """
        return {
            'is_collecting': self._is_collecting,
            'collection_interval': self._collection_interval,
            'last_collection_time': self._last_collection_time,
            'collectors': {
                'validator': self.collector.get_metrics_summary()
            }
        }

    def set_collection_interval(self, interval: float) -> None:
        """
        Set the metrics collection interval.

        Args:
            interval: Collection interval in seconds
        """
        if interval <= 0:
            raise ValueError("Collection interval must be positive")

        self._collection_interval = interval
        self.logger.info(f"Set collection interval to {interval} seconds")

    def get_registry(self) -> CollectorRegistry:
        """Get the Prometheus registry."""
        return self.registry
