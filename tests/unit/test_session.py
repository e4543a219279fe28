"""
Unit tests for session.py - Transfer session state machine
"""
import json
import pytest

from flingit.common.protocol import MessageType, MessageBuilder, FileOffer, BatchAnnouncement
from flingit.common.chunked_transfer import StagedFile
from flingit.common.session import TransferSession, SessionState


def feed_frames(session: TransferSession, items):
    """Hand outgoing items from one session to another, as the relay would"""
    for msg_type, item in items:
        if isinstance(item, bytes):
            body = item
        else:
            body = json.dumps(item.to_dict()).encode()
        session.handle_message(msg_type, body)


class TestSenderSide:
    """Tests for staging and outgoing frames"""

    def test_stage_moves_to_staged(self, session, recorder):
        assert session.stage([StagedFile.from_bytes("a.txt", b"hello")]) is True
        assert session.state == SessionState.STAGED
        assert recorder.states == [(SessionState.IDLE, SessionState.STAGED)]

    def test_empty_stage_rejected(self, session):
        assert session.stage([]) is False
        assert session.state == SessionState.IDLE

    def test_outgoing_order(self, session):
        session.stage([
            StagedFile.from_bytes("a.txt", b"0123456789"),
            StagedFile.from_bytes("b.txt", b""),
        ])
        items = list(session.outgoing_frames(chunk_size=4))
        types = [t for t, _ in items]

        assert types == [
            MessageType.BATCH_ANNOUNCE,
            MessageType.FILE_OFFER, MessageType.FILE_CHUNK, MessageType.FILE_CHUNK, MessageType.FILE_CHUNK,
            MessageType.FILE_OFFER,
        ]
        assert items[0][1] == BatchAnnouncement(2)
        assert items[1][1] == FileOffer("a.txt", 10, "text/plain")
        assert [len(c) for t, c in items if t == MessageType.FILE_CHUNK] == [4, 4, 2]
        assert session.state == SessionState.COMPLETE

    def test_chunk_boundary_plus_one(self, session, chunk_boundary_file):
        session.stage([StagedFile.from_path(chunk_boundary_file)])
        chunks = [c for t, c in session.outgoing_frames(16384) if t == MessageType.FILE_CHUNK]
        assert [len(c) for c in chunks] == [16384, 1]
        assert b"".join(chunks) == chunk_boundary_file.read_bytes()

    def test_outgoing_requires_staged(self, session):
        assert list(session.outgoing_frames()) == []
        assert session.state == SessionState.IDLE

    def test_send_progress_reported(self, session, recorder):
        session.stage([StagedFile.from_bytes("a", b"abcdef")])
        list(session.outgoing_frames(chunk_size=4))
        assert recorder.progress == [("a", 4, 6), ("a", 6, 6)]
        assert session.send_position == (0, 6)

    def test_reset_aborts_sending(self, session):
        session.stage([StagedFile.from_bytes("a", b"x" * 100)])
        frames = session.outgoing_frames(chunk_size=10)
        next(frames)  # announce
        next(frames)  # offer
        next(frames)  # first chunk

        session.reset()
        assert session.is_aborted
        assert list(frames) == []
        assert session.state == SessionState.IDLE

    def test_reset_before_announce_sends_nothing(self, session):
        session.stage([StagedFile.from_bytes("a", b"abc")])

        def reset_on_send(old, new):
            if new == SessionState.SENDING:
                session.reset()

        session.on_state_changed = reset_on_send
        assert list(session.outgoing_frames()) == []
        assert session.state == SessionState.IDLE

    def test_pairing_lost_aborts_sending(self, session, recorder):
        session.handle_pairing_found()
        session.stage([StagedFile.from_bytes("a", b"x" * 100)])
        frames = session.outgoing_frames(chunk_size=10)
        next(frames)
        next(frames)

        session.handle_pairing_lost()
        assert list(frames) == []
        assert session.state == SessionState.IDLE
        assert session.staged_files == []
        assert recorder.abandoned == ["pairing lost"]

    def test_cannot_stage_while_receiving(self, session):
        session.handle_file_offer(FileOffer("a", 10))
        assert session.stage([StagedFile.from_bytes("b", b"x")]) is False


class TestReceiverSide:
    """Tests for batch announcements, offers and chunks"""

    def test_single_file(self, session, recorder):
        session.handle_batch_announce(1)
        session.handle_file_offer(FileOffer("a.txt", 5, "text/plain"))
        assert session.state == SessionState.RECEIVING
        session.handle_chunk(b"hel")
        assert session.bytes_received == 3
        session.handle_chunk(b"lo")

        assert session.state == SessionState.COMPLETE
        assert len(recorder.files) == 1
        assert recorder.files[0].data == b"hello"
        assert recorder.files[0].mime_type == "text/plain"
        assert len(recorder.batches) == 1

    def test_phase_stays_idle_until_first_offer(self, session):
        session.handle_batch_announce(2)
        assert session.state == SessionState.IDLE
        assert session.expected_count == 2

    def test_ten_bytes_then_empty_file(self, session, recorder):
        session.handle_batch_announce(2)
        session.handle_file_offer(FileOffer("A", 10))
        session.handle_chunk(b"0123456789")
        assert session.state == SessionState.RECEIVING

        session.handle_file_offer(FileOffer("B", 0))

        assert [f.name for f in recorder.files] == ["A", "B"]
        assert [f.ordinal for f in recorder.files] == [1, 2]
        assert recorder.files[1].data == b""
        assert session.state == SessionState.COMPLETE
        assert len(recorder.batches) == 1
        assert [f.name for f in recorder.batches[0]] == ["A", "B"]

    def test_batch_completes_once(self, session, recorder):
        session.handle_batch_announce(1)
        session.handle_file_offer(FileOffer("a", 2))
        session.handle_chunk(b"ab")
        session.handle_chunk(b"cd")  # stray chunk after completion
        assert len(recorder.batches) == 1
        assert len(recorder.files) == 1

    def test_offer_without_announcement_is_batch_of_one(self, session, recorder):
        session.handle_file_offer(FileOffer("solo.bin", 3))
        session.handle_chunk(b"abc")
        assert session.state == SessionState.COMPLETE
        assert len(recorder.batches) == 1

    def test_chunk_without_offer_ignored(self, session, recorder):
        session.handle_chunk(b"stray")
        assert session.state == SessionState.IDLE
        assert recorder.files == []

    def test_overshoot_trimmed(self, session, recorder):
        session.handle_file_offer(FileOffer("a", 3))
        session.handle_chunk(b"abcdef")
        assert recorder.files[0].data == b"abc"

    def test_malformed_offer_rejected(self, session, recorder):
        session.handle_batch_announce(1)
        session.handle_message(MessageType.FILE_OFFER, b'{"name": "a", "size": -5}')

        assert len(recorder.rejections) == 1
        assert session.current_offer is None

        session.handle_chunk(b"ignored")
        assert recorder.files == []

    def test_malformed_offer_discards_pending_file(self, session, recorder):
        session.handle_batch_announce(2)
        session.handle_file_offer(FileOffer("a", 10))
        session.handle_chunk(b"12345")
        session.handle_message(MessageType.FILE_OFFER, b'{"name": "", "size": 3}')

        assert session.current_offer is None
        assert recorder.files == []

    def test_pairing_lost_mid_stream(self, session, recorder):
        session.handle_pairing_found()
        session.handle_batch_announce(1)
        session.handle_file_offer(FileOffer("a", 10))
        session.handle_chunk(b"12345")

        session.handle_pairing_lost()

        assert session.state == SessionState.IDLE
        assert session.paired is False
        assert session.completed_files == []
        assert recorder.files == []
        assert recorder.abandoned == ["pairing lost"]
        assert recorder.pairing == [True, False]

    def test_peer_reset_clears_state(self, session, recorder):
        session.handle_pairing_found()
        session.handle_file_offer(FileOffer("a", 10))
        session.handle_message(MessageType.SESSION_RESET, b"")

        assert session.state == SessionState.IDLE
        assert session.current_offer is None
        assert session.paired is True
        assert recorder.abandoned == ["peer reset"]

    def test_new_batch_after_complete(self, session, recorder):
        session.handle_batch_announce(1)
        session.handle_file_offer(FileOffer("a", 1))
        session.handle_chunk(b"a")
        session.handle_batch_announce(1)
        session.handle_file_offer(FileOffer("b", 1))
        session.handle_chunk(b"b")

        assert len(recorder.batches) == 2
        assert [f.name for f in recorder.batches[1]] == ["b"]

    def test_send_back_after_receiving(self, session):
        session.handle_file_offer(FileOffer("a", 1))
        session.handle_chunk(b"a")
        assert session.state == SessionState.COMPLETE

        assert session.stage([StagedFile.from_bytes("reply.txt", b"thanks")]) is True
        types = [t for t, _ in session.outgoing_frames()]
        assert types == [MessageType.BATCH_ANNOUNCE, MessageType.FILE_OFFER, MessageType.FILE_CHUNK]
        assert session.state == SessionState.COMPLETE

    def test_malformed_batch_announce_ignored(self, session):
        session.handle_message(MessageType.BATCH_ANNOUNCE, b'{"count": 0}')
        assert session.expected_count is None


class TestSessionToSession:
    """Sender items fed straight into a receiving session"""

    def test_batch_arrives_in_offer_order(self):
        sender = TransferSession()
        receiver = TransferSession()
        batches = []
        receiver.on_batch_completed = batches.append

        files = [
            StagedFile.from_bytes("one.txt", b"1" * 40000),
            StagedFile.from_bytes("two.txt", b""),
            StagedFile.from_bytes("three.bin", bytes(range(256))),
        ]
        sender.stage(files)
        feed_frames(receiver, sender.outgoing_frames())

        assert len(batches) == 1
        assert [f.name for f in batches[0]] == ["one.txt", "two.txt", "three.bin"]
        assert batches[0][0].data == b"1" * 40000
        assert batches[0][2].data == bytes(range(256))
        assert receiver.state == SessionState.COMPLETE

    def test_callback_errors_do_not_break_session(self, session):
        def boom(*args):
            raise RuntimeError("subscriber failed")

        session.on_file_completed = boom
        session.handle_file_offer(FileOffer("a", 1))
        session.handle_chunk(b"a")
        assert session.state == SessionState.COMPLETE


def test_message_builder_matches_session_items():
    """Frames built from session items decode back into the same messages"""
    session = TransferSession()
    session.stage([StagedFile.from_bytes("a.txt", b"abc")])
    frames = []
    for msg_type, item in session.outgoing_frames():
        if msg_type == MessageType.BATCH_ANNOUNCE:
            frames.append(MessageBuilder.build_batch_announce(item.count))
        elif msg_type == MessageType.FILE_OFFER:
            frames.append(MessageBuilder.build_file_offer(item))
        else:
            frames.append(MessageBuilder.build_file_chunk(item))

    assert [f[4] for f in frames] == [MessageType.BATCH_ANNOUNCE, MessageType.FILE_OFFER, MessageType.FILE_CHUNK]
