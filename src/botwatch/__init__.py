"""
botwatch - alerting pipeline for WeChat-group chatbots.

Packages:
- botwatch.core: errors, logging, settings, cache, events, scheduling, ORM
- botwatch.alerting: rule engine, dedup, rate limiting, fan-out, lifecycle
- botwatch.cli: typer command-line interface
"""

__version__ = "0.1.0"
