"""Xero accounting CLI and service wrapper with a namespaced TTL cache."""

__version__ = "0.1.0"
