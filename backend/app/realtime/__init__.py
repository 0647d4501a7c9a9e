"""
Real-time layer: Socket.IO server, presence, rooms and the event relay.
"""
from app.realtime.socket import sio, relay, presence, rooms

__all__ = ["sio", "relay", "presence", "rooms"]
