"""cosmic-relay: scheduled source polling with live fan-out to subscribers."""

__version__ = "0.1.0"
