"""
WebSocket layer for buyer/seller chat.

One live connection per user; auth in the first frame; messages are stored
before they are forwarded.
"""

from bazaar.core.websocket.manager import ConnectionRegistry

__all__ = ["ConnectionRegistry"]
