"""
CLI runner module.

Provides commands:
- load: Seed the state store from JSON
- rank / combos: Show candidate documents and combinations
- attach / detach: Manual attachment changes
- auto-assign: Automatic assignment
- status: Statistics
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
