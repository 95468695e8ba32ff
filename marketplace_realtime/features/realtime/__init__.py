"""Realtime WebSocket endpoint."""

from marketplace_realtime.features.realtime.router import router

__all__ = ["router"]
