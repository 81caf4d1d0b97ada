"""Upstream HTTP Clients.

Contains the clients for remote dependencies. Each client composes the
resilience components around its raw network calls.
"""
