"""Multi-agent fleet management query API."""

__version__ = "1.0.0"
