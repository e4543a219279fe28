"""Common modules shared by the relay server and clients"""
from .protocol import (
    MessageType,
    BatchAnnouncement,
    FileOffer,
    MessageBuilder,
    MessageParser
)
from .chunked_transfer import split, reassemble, StagedFile, ReceivedFile
from .session import SessionState, TransferSession

__all__ = [
    'MessageType',
    'BatchAnnouncement',
    'FileOffer',
    'MessageBuilder',
    'MessageParser',
    'split',
    'reassemble',
    'StagedFile',
    'ReceivedFile',
    'SessionState',
    'TransferSession'
]
