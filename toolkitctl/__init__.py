"""Lifecycle controller for the Domino admin toolkit."""

__version__ = "5.5.0"
BUILT_DATE = "2023-02-08"
