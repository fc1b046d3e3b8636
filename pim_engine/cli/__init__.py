"""
CLI Package.

Exports the pimctl click group.
"""

from .pimctl import cli, main

__all__ = ["cli", "main"]
