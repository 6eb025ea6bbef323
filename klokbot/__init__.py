"""Resilient automation client for a credential-rotating chat service."""

__version__ = "0.1.0"
