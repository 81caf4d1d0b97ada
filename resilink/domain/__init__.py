"""Domain Layer: value objects, errors, events and ports.

Has no dependencies on infrastructure; the resilience components and the
HTTP client speak in these types.
"""
