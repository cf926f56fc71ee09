"""
Web control surface for the raw data logger.
"""

from .app import ControlApp, create_app

__all__ = ["ControlApp", "create_app"]
