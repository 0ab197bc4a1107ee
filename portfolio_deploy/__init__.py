"""Idempotent HTTPS deployment of a static portfolio site behind Nginx."""

__version__ = "1.0.0"
