"""Relay server: pairing rooms and signaling"""
from .rooms import RoomRegistry, RoomFullError, normalize_address, room_name_for
from .relay import SignalingRelay
from .server import Connection, RelayServer

__all__ = [
    'RoomRegistry',
    'RoomFullError',
    'normalize_address',
    'room_name_for',
    'SignalingRelay',
    'Connection',
    'RelayServer'
]
