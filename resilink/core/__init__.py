"""Core Application Layer: Orchestrates use cases and application logic.

Connects the CLI entry point with the resilient data-service client and
the user interface.
"""
