"""resilink: resilient client layer for quota-limited upstream services."""

__version__ = "0.1.0"
