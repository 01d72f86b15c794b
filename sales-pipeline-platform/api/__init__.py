"""Sales Pipeline Platform HTTP API."""

__version__ = "0.1.0"
