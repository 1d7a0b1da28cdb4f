"""Pod network connectivity checks with outage tracking, object merging for apply, and a check-target HTTP server."""

__version__ = "0.1.0"