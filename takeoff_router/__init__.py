"""Retrieval router for quantity take-off questions over construction drawings."""

__version__ = "0.1.0"
