"""Caching Service Implementation.

Provides the in-memory TTL cache backing graceful degradation: results
of successful upstream calls are kept for a short time and served when
the system is degraded.
"""
