"""
Command-line interface.
"""

from queuectl.cli.main import cli

__all__ = ["cli"]
