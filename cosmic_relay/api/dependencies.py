"""
Dependency injection for FastAPI endpoints.
"""

from fastapi import HTTPException, status

from cosmic_relay.services.relay_service import RelayService

# Global service instance (set during app lifespan)
_relay_service: RelayService | None = None


def set_relay_service(service: RelayService | None) -> None:
    """Set the module-level relay service (called during app startup)."""
    global _relay_service
    _relay_service = service


def get_relay_service() -> RelayService:
    """
    Get the running relay service.

    Raises:
        HTTPException: 503 before startup completes or after shutdown
    """
    if _relay_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay service not available",
        )
    return _relay_service


def peek_relay_service() -> RelayService | None:
    """Current service without raising, for WebSocket handlers."""
    return _relay_service
