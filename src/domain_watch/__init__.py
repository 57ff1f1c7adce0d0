"""Domain lifecycle event ingestion, subscription webhooks, and analytics."""

__version__ = "0.1.0"
