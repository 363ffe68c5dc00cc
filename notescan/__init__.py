"""Delivery note and confirmation-of-receipt extraction from PDF documents."""

__version__ = "1.0.0"
