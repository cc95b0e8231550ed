"""Cookie Sentinel - cookie and tracker detection with inventory reconciliation."""

__version__ = "1.0.0"
