"""NegotiationEngine 협상 시나리오 테스트.

사용법:
    cd backend
    pytest test/test_negotiation.py
"""

import asyncio

import pytest

from fakes import (
    ROOM,
    FakeTrack,
    GatedCapture,
    Harness,
    answer_message,
    candidate_message,
    failing_sources,
    offer_message,
    settle,
)
from peerchat.errors import NegotiationError, PermissionDenied
from peerchat.media import MediaCaptureAdapter
from peerchat.shared.types import ConnectionState, PartyRole, SignalingState
from peerchat.webrtc.config import ICEServerConfig


def candidate_ips(pc):
    return [candidate.ip for candidate, _ in pc.candidates]


# ============================================================
# initiator
# ============================================================

def test_initiator_sends_offer_with_local_tracks():
    async def scenario():
        h = Harness()
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)

        assert h.engine.session is session
        assert session.signaling_state is SignalingState.HAVE_LOCAL_OFFER
        assert sorted(track.kind for track in h.pc.added_tracks) == ["audio", "video"]
        assert h.pc.listeners("icecandidate") == []
        assert all(h.pc.listeners(event) for event in ("track", "connectionstatechange", "iceconnectionstatechange"))
        assert h.transport.sent_events("offer") == [
            {"roomId": ROOM, "description": {"sdp": "v=0 offer", "type": "offer"}}
        ]
        assert h.fired("session_created") == [(session,)]
        await h.engine.aclose()

    asyncio.run(scenario())


def test_answer_flushes_queued_candidates_in_arrival_order():
    async def scenario():
        h = Harness()
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)

        await h.transport.deliver("ice_candidate", candidate_message(1))
        await h.transport.deliver("ice_candidate", candidate_message(2))
        assert len(session.pending_ice_candidates) == 2
        assert h.pc.candidates == []

        await h.transport.deliver("answer", answer_message())
        assert session.signaling_state is SignalingState.STABLE
        assert session.is_remote_description_set
        assert not session.pending_ice_candidates
        assert candidate_ips(h.pc) == ["192.168.1.1", "192.168.1.2"]
        assert all(remote_set for _, remote_set in h.pc.candidates)

        # remote description 이후 후보는 바로 적용
        await h.transport.deliver("ice_candidate", candidate_message(3))
        assert candidate_ips(h.pc) == ["192.168.1.1", "192.168.1.2", "192.168.1.3"]
        await h.engine.aclose()

    asyncio.run(scenario())


def test_duplicate_answer_is_ignored():
    async def scenario():
        h = Harness()
        await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("answer", answer_message())
        await h.transport.deliver("answer", answer_message())

        assert h.pc.count("setRemoteDescription") == 1
        assert h.fired("negotiation_failed") == []
        await h.engine.aclose()

    asyncio.run(scenario())


def test_answer_without_session_or_for_other_room_is_dropped():
    async def scenario():
        h = Harness()
        h.engine.bind(ROOM)
        await h.transport.deliver("answer", answer_message())
        assert h.pcs == []

        await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("answer", answer_message(room="other-room"))
        assert h.pc.count("setRemoteDescription") == 0
        assert h.engine.session.signaling_state is SignalingState.HAVE_LOCAL_OFFER
        await h.engine.aclose()

    asyncio.run(scenario())


def test_offer_failure_tears_down_session():
    async def scenario():
        h = Harness(fail_on={"createOffer"})
        with pytest.raises(NegotiationError):
            await h.engine.create_session(ROOM, PartyRole.INITIATOR)

        assert h.engine.session is None
        assert h.engine.bound_room is None
        assert len(h.fired("session_closed")) == 1
        await h.engine.drain()
        assert h.pc.closed

    asyncio.run(scenario())


# ============================================================
# responder
# ============================================================

def test_responder_answers_offer_and_applies_early_candidates():
    async def scenario():
        h = Harness()
        h.engine.bind(ROOM)

        # offer보다 먼저 도착한 후보
        await h.transport.deliver("ice_candidate", candidate_message(1))
        assert h.engine.session is None

        await h.transport.deliver("offer", offer_message())
        session = h.engine.session
        assert session.role is PartyRole.RESPONDER
        assert session.signaling_state is SignalingState.STABLE
        assert h.transport.sent_events("answer") == [
            {"roomId": ROOM, "description": {"sdp": "v=0 answer", "type": "answer"}}
        ]
        assert candidate_ips(h.pc) == ["192.168.1.1"]

        calls = h.pc.calls
        assert calls.index("setRemoteDescription") < calls.index("addIceCandidate")
        assert calls.index("addIceCandidate") < calls.index("createAnswer")
        await h.engine.aclose()

    asyncio.run(scenario())


def test_offer_for_unbound_room_is_dropped():
    async def scenario():
        h = Harness()
        h.engine.bind(ROOM)
        await h.transport.deliver("offer", offer_message(room="other-room"))
        await h.transport.deliver("offer", {"roomId": ROOM})

        assert h.engine.session is None
        assert h.pcs == []

    asyncio.run(scenario())


def test_responder_peer_connection_failure_is_reported():
    async def scenario():
        h = Harness(fail_on={"addTrack"})
        h.engine.bind(ROOM)
        await h.transport.deliver("offer", offer_message())
        await settle()

        assert h.engine.session is None
        assert h.transport.sent_events("answer") == []
        assert h.pc.closed
        [(failed_session, error)] = h.fired("negotiation_failed")
        assert failed_session.closed
        assert failed_session.role is PartyRole.RESPONDER
        assert isinstance(error, NegotiationError)

    asyncio.run(scenario())


def test_responder_capture_failure_is_reported():
    async def scenario():
        capture = MediaCaptureAdapter(source_factory=failing_sources(PermissionError("denied")))
        h = Harness(capture=capture)
        h.engine.bind(ROOM)
        await h.transport.deliver("offer", offer_message())

        assert h.engine.session is None
        assert h.engine.bound_room is None
        [(error,)] = h.fired("capture_failed")
        assert isinstance(error, PermissionDenied)

    asyncio.run(scenario())


def test_create_session_propagates_capture_failure():
    async def scenario():
        capture = MediaCaptureAdapter(source_factory=failing_sources(PermissionError("denied")))
        h = Harness(capture=capture)
        with pytest.raises(PermissionDenied):
            await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        assert h.engine.session is None
        assert h.engine.bound_room is None

    asyncio.run(scenario())


def test_teardown_during_capture_cancels_session_creation():
    async def scenario():
        capture = GatedCapture()
        h = Harness(capture=capture)
        task = asyncio.create_task(h.engine.create_session(ROOM, PartyRole.INITIATOR))
        await settle()

        h.engine.teardown()
        capture.gate.set()

        assert await task is None
        assert h.engine.session is None
        assert h.pcs == []
        assert h.transport.sent_events("offer") == []

    asyncio.run(scenario())


# ============================================================
# glare
# ============================================================

def test_glare_discards_local_offer_and_answers_remote_offer():
    async def scenario():
        h = Harness()
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        first_pc = h.pc

        await h.transport.deliver("ice_candidate", candidate_message(1))
        await h.transport.deliver("offer", offer_message())

        assert h.engine.session is session
        assert len(h.pcs) == 2
        assert session.pc is h.pcs[1]
        assert session.signaling_state is SignalingState.STABLE
        assert len(h.transport.sent_events("answer")) == 1
        assert candidate_ips(h.pcs[1]) == ["192.168.1.1"]
        assert len(h.pcs[1].added_tracks) == 2

        await settle()
        assert first_pc.closed

        # 폐기된 pc의 이벤트는 무시
        first_pc.set_connection_state("failed")
        await settle()
        assert h.fired("connection_state") == []
        assert h.engine.session is session
        await h.engine.aclose()

    asyncio.run(scenario())


# ============================================================
# ICE 후보
# ============================================================

def test_failed_candidate_does_not_fail_session():
    async def scenario():
        h = Harness(fail_on={"addIceCandidate"})
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("ice_candidate", candidate_message(1))
        await h.transport.deliver("answer", answer_message())
        await h.transport.deliver("ice_candidate", candidate_message(2))

        assert h.pc.count("addIceCandidate") == 2
        assert h.engine.session is session
        assert h.fired("negotiation_failed") == []
        await h.engine.aclose()

    asyncio.run(scenario())


def test_malformed_and_end_of_candidates_are_ignored():
    async def scenario():
        h = Harness()
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("answer", answer_message())

        await h.transport.deliver("ice_candidate", {"roomId": ROOM, "candidate": {"candidate": "garbage"}})
        await h.transport.deliver("ice_candidate", {"roomId": ROOM, "candidate": {"candidate": ""}})
        await h.transport.deliver("ice_candidate", {"roomId": ROOM})

        assert h.pc.count("addIceCandidate") == 0
        assert h.engine.session is session
        await h.engine.aclose()

    asyncio.run(scenario())


# ============================================================
# 원격 트랙
# ============================================================

def test_remote_tracks_replace_same_kind_and_announce_once():
    async def scenario():
        h = Harness()
        await h.engine.create_session(ROOM, PartyRole.INITIATOR)

        audio = FakeTrack("audio")
        h.pc.deliver_track(audio)
        await settle()
        assert h.engine.remote_tracks.audio is audio
        assert len(h.fired("remote_stream_ready")) == 1

        replacement = FakeTrack("audio")
        h.pc.deliver_track(replacement)
        await settle()
        assert h.engine.remote_tracks.audio is replacement
        assert audio.readyState == "ended"

        video = FakeTrack("video")
        h.pc.deliver_track(video)
        await settle()
        assert h.engine.remote_tracks.kinds() == ["audio", "video"]
        assert len(h.fired("remote_stream_ready")) == 1

        # 원격 트랙 종료
        video.stop()
        assert h.engine.remote_tracks.kinds() == ["audio"]
        assert h.fired("remote_tracks")[-1][0].kinds() == ["audio"]
        await h.engine.aclose()

    asyncio.run(scenario())


def test_teardown_stops_remote_tracks_but_keeps_local_capture():
    async def scenario():
        h = Harness()
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        remote = FakeTrack("video")
        h.pc.deliver_track(remote)
        await settle()

        h.engine.teardown()
        h.engine.teardown()

        assert remote.readyState == "ended"
        assert session.signaling_state is SignalingState.CLOSED
        assert h.fired("session_closed") == [(session,)]
        assert len(h.engine.remote_tracks) == 0
        assert h.capture.is_acquired
        assert all(track.readyState == "live" for track in h.capture.tracks)

        await h.engine.drain()
        assert h.pc.closed

        # 종료 후 도착한 메시지는 무시
        await h.transport.deliver("answer", answer_message())
        assert h.pc.count("setRemoteDescription") == 0

    asyncio.run(scenario())


def test_new_session_replaces_previous_one():
    async def scenario():
        h = Harness()
        first = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        second = await h.engine.create_session("room-2", PartyRole.INITIATOR)

        assert first.closed
        assert h.engine.session is second
        assert h.engine.bound_room == "room-2"
        assert second.session_id != first.session_id
        await h.engine.aclose()

    asyncio.run(scenario())


# ============================================================
# 연결 상태 / ICE 재시작
# ============================================================

def test_connection_state_is_reported_on_change():
    async def scenario():
        h = Harness()
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        h.pc.set_connection_state("connecting")
        h.pc.set_connection_state("connected")
        h.pc.set_ice_state("checking")
        await settle()

        assert h.fired("connection_state") == [(session, ConnectionState.CONNECTED)]
        assert h.fired("ice_connection_state") == [(session, "checking")]
        assert h.engine.connection_state is ConnectionState.CONNECTED
        await h.engine.aclose()

    asyncio.run(scenario())


def test_initiator_restarts_ice_once_and_recovers():
    async def scenario():
        h = Harness(restart_timeout=0.05)
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("answer", answer_message())

        failed_pc = h.pc
        h.pc.set_connection_state("failed")
        await settle()
        assert session.ice_restart_attempted
        assert len(h.transport.sent_events("offer")) == 2
        assert session.signaling_state is SignalingState.HAVE_LOCAL_OFFER
        assert len(h.pcs) == 2
        assert session.pc is h.pc and session.pc is not failed_pc
        assert failed_pc.closed
        assert len(h.pc.added_tracks) == 2
        assert h.pc.localDescription.type == "offer"

        await h.transport.deliver("answer", answer_message())
        h.pc.set_connection_state("connected")
        await settle()
        await asyncio.sleep(0.1)

        assert h.engine.session is session
        assert h.fired("negotiation_failed") == []
        await h.engine.aclose()

    asyncio.run(scenario())


def test_restart_timeout_fails_session():
    async def scenario():
        h = Harness(restart_timeout=0.02)
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("answer", answer_message())

        h.pc.set_connection_state("failed")
        await settle()
        await asyncio.sleep(0.1)

        assert h.engine.session is None
        [(failed_session, error)] = h.fired("negotiation_failed")
        assert failed_session is session
        assert isinstance(error, NegotiationError)

    asyncio.run(scenario())


def test_second_failure_after_restart_is_reported():
    async def scenario():
        h = Harness(restart_timeout=1.0)
        session = await h.engine.create_session(ROOM, PartyRole.INITIATOR)
        await h.transport.deliver("answer", answer_message())

        h.pc.set_connection_state("failed")
        await settle()
        await h.transport.deliver("answer", answer_message())
        h.pc.set_connection_state("connected")
        await settle()
        h.pc.set_connection_state("failed")
        await settle()

        assert h.engine.session is None
        assert len(h.fired("negotiation_failed")) == 1
        assert len(h.transport.sent_events("offer")) == 2
        assert session.closed

    asyncio.run(scenario())


def test_responder_waits_for_restart_offer():
    async def scenario():
        h = Harness(restart_timeout=1.0)
        h.engine.bind(ROOM)
        await h.transport.deliver("offer", offer_message())
        session = h.engine.session

        h.pc.set_ice_state("failed")
        await settle()
        assert session.ice_restart_attempted
        assert h.transport.sent_events("offer") == []

        failed_pc = h.pc
        # 상대방의 재시작 offer
        await h.transport.deliver("offer", offer_message(sdp="v=0 restart offer"))
        assert len(h.pcs) == 2
        assert h.pc.remoteDescription.sdp == "v=0 restart offer"
        assert h.pc.localDescription.type == "answer"
        h.pc.set_connection_state("connected")
        await settle()
        assert failed_pc.closed

        assert len(h.transport.sent_events("answer")) == 2
        assert session.restart_watchdog is None
        assert h.engine.session is session
        await h.engine.aclose()

    asyncio.run(scenario())


def test_ice_server_entries_order_and_turn():
    stun_only = ICEServerConfig(STUN_SERVER_URL=None, TURN_SERVER_URL="turn:turn.test:3478",
                                TURN_USERNAME=None, TURN_CREDENTIAL=None)
    assert not stun_only.has_turn_server
    assert [entry["urls"] for entry in stun_only.server_entries()] == list(stun_only.DEFAULT_STUN_SERVERS)

    full = ICEServerConfig(STUN_SERVER_URL="stun:stun.test:3478", TURN_SERVER_URL="turn:turn.test:3478",
                           TURN_USERNAME="user", TURN_CREDENTIAL="pass")
    entries = full.server_entries()
    assert entries[0] == {"urls": "stun:stun.test:3478"}
    assert entries[-1] == {"urls": "turn:turn.test:3478", "username": "user", "credential": "pass"}
