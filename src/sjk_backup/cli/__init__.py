"""Command line interface for sjk-backup."""

from .dispatcher import main

__all__ = ["main"]
