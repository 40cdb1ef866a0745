"""
eventbus package.

In-process event bus letting named publishers emit typed events that
subscribed consumers receive synchronously, optionally filtered by type.
"""

__version__ = "0.1.0"
