"""
Solana validator monitor.

This package polls a tracked validator's RPC node and a trusted network
RPC node, derives comparative health metrics, exports them for
Prometheus and sends status and transition alerts.
"""

__version__ = "0.1.0"
