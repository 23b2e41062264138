"""
Pulsewatch

Uptime monitoring engine: scheduled HTTP probes with bounded concurrency,
durable result history and status transition events.
"""

__version__ = "0.1.0"
