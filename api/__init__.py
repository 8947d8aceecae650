"""Local HTTP API for Konserve."""

__version__ = "0.4.0"
