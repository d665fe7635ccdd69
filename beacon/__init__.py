"""Access-log beacon aggregator."""

__version__ = "0.1.0"
