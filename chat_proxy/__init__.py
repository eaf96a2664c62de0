"""HTTP proxy forwarding sanitized chat messages to the LongCat API."""

__version__ = "1.0.0"
