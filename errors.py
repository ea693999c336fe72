"""
Error taxonomy for the hedge pipeline.

Per-deposit and per-venue failures are turned into data (failed positions,
partial execution logs). Only ConfigurationError is fatal.
"""


class HedgeError(Exception):
    """Base class for all pipeline errors."""


class TransientIOError(HedgeError):
    """A store or network call failed; the unit of work may be retried."""


class VenueError(HedgeError):
    """A single venue rejected or failed an order submission."""

    def __init__(self, venue: str, message: str):
        super().__init__(f"{venue}: {message}")
        self.venue = venue
        self.message = message


class ConfigurationError(HedgeError):
    """Required configuration is missing or invalid at startup."""


class DecodeError(HedgeError):
    """A queue payload or stored record could not be decoded."""
