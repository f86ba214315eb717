"""
HTTP presenter module.
"""

from queuectl.api.main import create_app, run

__all__ = ["create_app", "run"]
