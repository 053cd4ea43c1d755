"""
AGI Canary Watcher - pipeline core

Discover → acquire → extract → map → aggregate, driven by a Postgres job queue.
"""

__version__ = "0.1.0"
