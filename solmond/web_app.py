"""
Flask web application exposing the validator metrics.
"""

import logging
from datetime import datetime

from flask import Flask, jsonify

from solmond.monitoring.metrics_endpoint import MetricsEndpoint


class MonitorWebApp:
    """Flask application serving /metrics, /health and /metrics/status."""

    def __init__(self, metrics_endpoint: MetricsEndpoint):
        self.app = Flask(__name__)
        self.metrics_endpoint = metrics_endpoint
        self.logger = logging.getLogger(__name__)

        self._register_routes()

        self.logger.info("Monitor web application initialized")

    def _register_routes(self):
        """Register all routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'timestamp': datetime.now().isoformat(),
                'service': 'solmon'
            })

        @self.app.route('/metrics', methods=['GET'])
        def metrics():
            """Prometheus scrape endpoint."""
            return self.metrics_endpoint.get_metrics_response()

        @self.app.route('/metrics/status', methods=['GET'])
        def metrics_status():
            """Collection status."""
            try:
                status = self.metrics_endpoint.get_collection_status()
                return jsonify({
                    'metrics_status': status,
                    'timestamp': datetime.now().isoformat()
                })
            except Exception as e:
                self.logger.error(f"Error getting metrics status: {e}")
                return jsonify({
                    'error': 'Internal server error',
                    'message': str(e)
                }), 500

    def run(self, host='0.0.0.0', port=9090, debug=False):
        """Run the Flask application."""
        self.logger.info(f"Starting monitor web application on {host}:{port}")
        self.app.run(host=host, port=port, debug=debug, use_reloader=False)


def create_app(metrics_endpoint: MetricsEndpoint) -> Flask:
    """Create and configure the Flask application."""
    return MonitorWebApp(metrics_endpoint).app
