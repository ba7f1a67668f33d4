"""Schemas shared between the todo API server and the sync client."""

__version__ = "0.1.0"
