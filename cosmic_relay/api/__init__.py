"""
Relay gateway.

Provides REST and WebSocket access to the relay core:
- GET /api/sources - Source catalog
- GET /api/sources/{id}/latest - Latest value inside the retention window
- WS /ws/sources/{id} - Live updates
- GET /health - Service health check
"""

from cosmic_relay.api.app import create_app

__all__ = ["create_app"]
