"""Bridge from an agent CLI's stream-json output to a Messages-style HTTP API."""

__version__ = "0.1.0"
