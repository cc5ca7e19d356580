"""
gridtrader - Live shell around the gridrisk engine.

Loads YAML configuration, executes engine intents against an order
gateway, paces ladder placement with the batch optimizer and persists
performance data on shutdown.
"""

__version__ = "0.1.0"
