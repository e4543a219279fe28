"""
Signaling relay - forwards transfer messages between room members.

Bodies are never inspected; only the type byte decides whether a message is
forwarded.
"""
import logging

from flingit.common.protocol import MessageType, MessageBuilder, RELAYED_TYPES, event_name
from flingit.server.rooms import RoomRegistry

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Forwards relayable messages to every other member of the sender's room"""

    def __init__(self, rooms: RoomRegistry):
        self.rooms = rooms

    @staticmethod
    def is_relayable(msg_type: int) -> bool:
        return msg_type in RELAYED_TYPES

    def relay(self, sender, msg_type: int, payload: bytes) -> int:
        """
        Send one message to the sender's peers.

        Returns:
            Number of peers the frame was delivered to

        Raises:
            ValueError: msg_type is not a relayed type
        """
        if not self.is_relayable(msg_type):
            raise ValueError(f"{event_name(msg_type)} is not relayed")

        peers = self.rooms.peers_of(sender)
        if msg_type == MessageType.FILE_CHUNK:
            logger.debug(f"[CHUNK] From {sender.id} ({len(payload)} bytes) to {len(peers)} peer(s)")
        elif msg_type == MessageType.FILE_OFFER:
            logger.info(f"[OFFER] From {sender.id}")
        elif msg_type == MessageType.SESSION_RESET:
            logger.info(f"[RESET] From {sender.id}")
        else:
            logger.info(f"[{event_name(msg_type).upper()}] From {sender.id}")

        if not peers:
            return 0

        frame = MessageBuilder.build(msg_type, payload)
        delivered = 0
        for peer in peers:
            if peer.send(frame):
                delivered += 1
            else:
                logger.debug(f"Relay to {peer.id} failed")
        return delivered
