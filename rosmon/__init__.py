"""RouterOS multi-tenant polling and metrics service."""

__version__ = "1.0.0"
