"""
botwatch command-line interface.

Usage::

    botwatch db init
    botwatch evaluate --console
    botwatch ack ALERT_ID --user alice
    botwatch stats
"""

from botwatch.cli.app import app

__all__ = ["app"]
