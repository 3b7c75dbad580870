"""
Base metrics collector for the validator monitor.

Provides the foundation for metrics collection with proper labeling,
asynchronous collection, and self-instrumentation.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry


class MetricsCollector(ABC):
    """
    Base class for metrics collectors.

    Provides common functionality for:
    - Asynchronous metrics collection
    - Collection duration, frequency and error tracking
    - Registry management
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional Prometheus registry. If None, a fresh registry is created.
        """
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._collection_start_time = time.time()
        self._last_collection_time = 0.0
        self._collection_count = 0

        # use collector type to keep names unique per registry
        collector_type = self.__class__.__name__
        self._collection_duration = Histogram(
            f'metrics_collection_duration_seconds_{collector_type.lower()}',
            'Time spent collecting metrics',
            ['collector_type'],
            registry=self.registry
        )

        self._collection_errors = Counter(
            f'metrics_collection_errors_total_{collector_type.lower()}',
            'Total number of metrics collection errors',
            ['collector_type', 'error_type'],
            registry=self.registry
        )

        self._collection_frequency = Gauge(
            f'metrics_collection_frequency_per_second_{collector_type.lower()}',
            'Metrics collection frequency',
            ['collector_type'],
            registry=self.registry
        )

        # Initialize collector-specific metrics
        self._initialize_metrics()

    @abstractmethod
    def _initialize_metrics(self) -> None:
        """Initialize collector-specific metrics. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def collect_metrics(self) -> Dict[str, Any]:
        """
        Collect metrics asynchronously. Must be implemented by subclasses.

        Returns:
            Dictionary containing collected metrics data
        """
        pass

    async def collect(self) -> Dict[str, Any]:
        """
        Main collection method with performance tracking.

        Returns:
            Dictionary containing collected metrics data
        """
        start_time = time.time()
        collector_type = self.__class__.__name__

        try:
            metrics_data = await self.collect_metrics()

            duration = time.time() - start_time
            self._collection_duration.labels(collector_type=collector_type).observe(duration)

            current_time = time.time()
            if self._last_collection_time > 0:
                time_diff = current_time - self._last_collection_time
                if time_diff > 0:
                    self._collection_frequency.labels(collector_type=collector_type).set(1.0 / time_diff)

            self._last_collection_time = current_time
            self._collection_count += 1

            self.logger.debug(f"Collected {len(metrics_data)} metric groups in {duration:.4f}s")
            return metrics_data

        except Exception as e:
            self.record_error(type(e).__name__)
            self.logger.error(f"Error collecting metrics: {e}")
            raise

    def record_error(self, error_type: str) -> None:
        """Count a collection error of the given type."""
        self._collection_errors.labels(
            collector_type=self.__class__.__name__,
            error_type=error_type
        ).inc()

    def get_registry(self) -> CollectorRegistry:
        """Get the Prometheus registry for this collector."""
        return self.registry

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get a summary of collection performance.

        Returns:
            Dictionary with collection statistics
        """
        uptime = time.time() - self._collection_start_time

        return {
            'collector_type': self.__class__.__name__,
            'uptime_seconds': uptime,
            'collection_count': self._collection_count,
            'last_collection_time': self._last_collection_time,
            'average_frequency_per_second': self._collection_count / uptime if uptime > 0 else 0
        }

    def create_counter(self,
                       name: str,
                       description: str,
                       labelnames: Optional[List[str]] = None) -> Counter:
        """Create a Counter metric in this collector's registry."""
        return Counter(
            name,
            description,
            labelnames or [],
            registry=self.registry
        )

    def create_gauge(self,
                     name: str,
                     description: str,
                     labelnames: Optional[List[str]] = None) -> Gauge:
        """Create a Gauge metric in this collector's registry."""
        return Gauge(
            name,
            description,
            labelnames or [],
            registry=self.registry
        )
