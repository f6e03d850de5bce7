"""Services: long-running composition of the relay core."""

from cosmic_relay.services.relay_service import HistoryResult, RelayService

__all__ = ["HistoryResult", "RelayService"]
