"""
CLI module for kvconfig.

Provides the command-line interface using Click.
"""

from kvconfig.cli.main import cli, main

__all__ = ["main", "cli"]
