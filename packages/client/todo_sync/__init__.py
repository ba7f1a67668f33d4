"""
Client-side synchronization for the todo API.

Keeps one local snapshot of the signed-in user's todos consistent with the
server: every mutation and every change-feed event invalidates the snapshot
and triggers a full refetch.
"""

__version__ = "0.1.0"
