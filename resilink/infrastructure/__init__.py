"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (HTTP upstreams, console,
configuration files) and hosts the resilience components.
"""
