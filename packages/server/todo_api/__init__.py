"""Todo API server: record store, mutation gateway, change feed and auth."""

__version__ = "0.1.0"
