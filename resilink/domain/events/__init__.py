"""Domain Event definitions.

Represents significant occurrences within the resilience layer that
monitoring code might react to (state changes, fallbacks, quota warnings).
"""
