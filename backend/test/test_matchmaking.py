"""MatchmakingQueue 테스트."""

from peerchat.matchmaking import MatchmakingQueue


def make_queue(*peer_ids):
    queue = MatchmakingQueue()
    for peer_id in peer_ids:
        queue.register(peer_id, websocket=object())
    return queue


def test_second_joiner_becomes_initiator():
    queue = make_queue("peer-a", "peer-b")

    assert queue.enqueue("peer-a") is None
    assert queue.queue_position("peer-a") == 1

    room = queue.enqueue("peer-b")
    assert room.initiator_id == "peer-b"
    assert room.responder_id == "peer-a"
    assert queue.get_peer("peer-a").room_id == room.room_id
    assert queue.get_partner("peer-a").peer_id == "peer-b"
    assert queue.queue_position("peer-a") is None
    assert queue.get_stats() == {"peers": 2, "waiting": 0, "rooms": 1}


def test_fifo_order_and_duplicate_enqueue():
    queue = make_queue("a", "b", "c")
    queue.enqueue("a")
    queue.enqueue("a")
    assert list(queue.waiting) == ["a"]

    room = queue.enqueue("b")
    assert room.responder_id == "a"
    assert queue.enqueue("c") is None
    assert queue.queue_position("c") == 1

    # 이미 매칭된 참가자는 대기열에 들어가지 않음
    assert queue.enqueue("b") is None
    assert list(queue.waiting) == ["c"]


def test_dequeue_and_disconnected_waiters_are_skipped():
    queue = make_queue("a", "b", "c")
    queue.enqueue("a")
    assert queue.dequeue("a")
    assert not queue.dequeue("a")

    queue.enqueue("b")
    queue.peers.pop("b")
    assert queue.enqueue("c") is None
    assert list(queue.waiting) == ["c"]


def test_end_room_returns_partner_and_frees_both():
    queue = make_queue("a", "b")
    queue.enqueue("a")
    room = queue.enqueue("b")

    partner = queue.end_room("b")
    assert partner.peer_id == "a"
    assert room.room_id not in queue.rooms
    assert queue.get_peer("a").room_id is None
    assert queue.get_peer("b").room_id is None
    assert queue.end_room("b") is None


def test_unregister_ends_room():
    queue = make_queue("a", "b")
    queue.enqueue("a")
    queue.enqueue("b")

    partner = queue.unregister("a")
    assert partner.peer_id == "b"
    assert queue.get_peer("a") is None
    assert queue.get_room("b") is None
    assert queue.unregister("a") is None
    assert queue.get_stats() == {"peers": 1, "waiting": 0, "rooms": 0}
