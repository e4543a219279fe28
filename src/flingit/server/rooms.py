"""
Pairing rooms.

Every connection is placed into a room named after its network identity, so
devices behind the same public address end up together without any input.
A room with two or more members is "paired": members are told pairing-found
when that happens and pairing-lost when the room drops back below two.
"""
import logging
import ipaddress
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from flingit import config
from flingit.common.protocol import MessageBuilder

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


class RoomFullError(Exception):
    """Joining would exceed the room's member limit"""

    def __init__(self, room_name: str, limit: int):
        super().__init__(f"Room {room_name} is full ({limit} members)")
        self.room_name = room_name
        self.limit = limit


def normalize_address(address) -> Optional[str]:
    """
    Canonical text form of a client IP address.

    - zone ids are dropped (fe80::1%eth0 -> fe80::1)
    - IPv6-mapped IPv4 is unwrapped (::ffff:10.0.0.2 -> 10.0.0.2)
    - every loopback form becomes 127.0.0.1
    - IPv6 is printed compressed

    Returns:
        None if the address cannot be parsed
    """
    if not address:
        return None

    host = str(address).strip()
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    host = host.split('%', 1)[0]

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    if ip.is_loopback:
        return LOOPBACK
    return ip.compressed


def room_name_for(connection) -> str:
    """Room a connection belongs to; unidentifiable connections get a private room"""
    identity = normalize_address(getattr(connection, 'address', None))
    if identity is None:
        return f"solo-{connection.id}"
    return f"{config.ROOM_PREFIX}{identity}"


@dataclass
class Room:
    name: str
    members: List = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)


class RoomRegistry:
    """
    Room table shared by all connection handlers.

    Membership changes happen under the lock; notifications are sent to a
    snapshot of the members after the lock is released.
    """

    def __init__(self, max_room_size: int = config.MAX_ROOM_SIZE):
        self.max_room_size = max_room_size
        self._rooms: Dict[str, Room] = {}
        self._membership: Dict[str, str] = {}  # connection id -> room name
        self._lock = threading.Lock()

    def join(self, connection) -> int:
        """
        Add a connection to its room.

        Returns:
            Member count after the join

        Raises:
            RoomFullError: the room already holds max_room_size members
        """
        name = room_name_for(connection)

        with self._lock:
            current = self._membership.get(connection.id)
            if current is not None:
                room = self._rooms[current]
                return room.size

            room = self._rooms.get(name)
            if room is None:
                room = Room(name)
                self._rooms[name] = room

            if self.max_room_size and room.size >= self.max_room_size:
                raise RoomFullError(name, self.max_room_size)

            room.members.append(connection)
            self._membership[connection.id] = name
            count = room.size
            snapshot = list(room.members)

        logger.info(f"[ROOM] Joined {name} | Total Size: {count}")

        if count >= 2:
            logger.info(f"[MATCH] Emitting pairing-found to {name}")
            self._broadcast(snapshot, MessageBuilder.build_pairing_found())

        return count

    def leave(self, connection) -> int:
        """
        Remove a connection from its room.

        Returns:
            Member count after the leave (0 if it was not a member)
        """
        with self._lock:
            name = self._membership.pop(connection.id, None)
            if name is None:
                return 0
            room = self._rooms[name]
            room.members = [m for m in room.members if m.id != connection.id]
            count = room.size
            snapshot = list(room.members)
            if count == 0:
                del self._rooms[name]

        if count == 0:
            logger.debug(f"[ROOM] {name} is empty, removed")
        elif count < 2:
            logger.info(f"[LOST] Room {name} less than 2 peers.")
            self._broadcast(snapshot, MessageBuilder.build_pairing_lost())

        return count

    def room_of(self, connection) -> Optional[str]:
        with self._lock:
            return self._membership.get(connection.id)

    def peers_of(self, connection) -> List:
        """Snapshot of the other members of the connection's room"""
        with self._lock:
            name = self._membership.get(connection.id)
            if name is None:
                return []
            return [m for m in self._rooms[name].members if m.id != connection.id]

    def member_count(self, name: str) -> int:
        with self._lock:
            room = self._rooms.get(name)
            return room.size if room else 0

    def room_names(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def _broadcast(self, members: List, frame: bytes):
        for member in members:
            if not member.send(frame):
                logger.debug(f"Could not notify connection {member.id}")
