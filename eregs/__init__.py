"""Resilient, namespace-isolated caching client for eRegulations APIs."""

__version__ = "0.1.0"
