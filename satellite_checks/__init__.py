"""Run one check on several remote satellites and combine the answers into one verdict."""

__version__ = "0.1.0"
