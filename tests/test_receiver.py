from __future__ import annotations

import pytest

from helpers import wire
from rltp.constants import ACK_DOWNLOAD_DONE, ACK_UPLOAD_DONE
from rltp.errors import ProtocolViolation
from rltp.items import ItemRegistry, directory_sinks
from rltp.packet import Ack, DataPacket
from rltp.receiver import SequencedReceiver
from rltp.state import Phase, PhaseState


def chunk(seq, item="a.txt", offset=0, lines=("x",)):
    return DataPacket(item=item, start_offset=offset, lines=tuple(lines), seq=seq).to_bytes()


@pytest.fixture
def setup(tmp_path):
    client, server = wire()
    registry = ItemRegistry(directory_sinks(tmp_path))
    receiver = SequencedReceiver(server, registry, PhaseState(Phase.UPLOAD), grace_ms=0)
    return client, server, receiver, tmp_path


def acks(endpoint):
    return [p.acked for p in endpoint.sent_packets()]


def test_in_order_chunks_are_applied_and_acked(setup):
    client, server, receiver, tmp_path = setup
    receiver.accept(chunk(0, lines=("1", "2")), client.address)
    receiver.accept(chunk(1, item="b.txt", lines=("b",)), client.address)
    receiver.accept(chunk(2, offset=2, lines=("3",)), client.address)

    assert acks(server) == [0, 1, 2]
    assert receiver.state.last_accepted == 2
    assert receiver.registry.names == ["a.txt", "b.txt"]
    receiver.registry.close()
    assert (tmp_path / "a.txt").read_text() == "1\n2\n3\n"
    assert (tmp_path / "b.txt").read_text() == "b\n"


def test_duplicate_is_reacked_not_rewritten(setup):
    client, server, receiver, tmp_path = setup
    receiver.accept(chunk(0, lines=("1", "2")), client.address)
    receiver.accept(chunk(0, lines=("1", "2")), client.address)
    receiver.accept(chunk(0, lines=("1", "2")), client.address)

    assert acks(server) == [0, 0, 0]
    assert server.sent[0] == server.sent[1] == server.sent[2]
    assert receiver.metrics.duplicates == 2
    assert receiver.state.last_accepted == 0
    receiver.registry.close()
    assert (tmp_path / "a.txt").read_text() == "1\n2\n"


def test_old_packet_is_dropped_silently(setup):
    client, server, receiver, _ = setup
    for seq in range(3):
        receiver.accept(chunk(seq, offset=seq), client.address)
    receiver.accept(chunk(0), client.address)
    receiver.accept(chunk(-5), client.address)

    assert acks(server) == [0, 1, 2]
    assert receiver.metrics.stale == 2
    assert receiver.state.last_accepted == 2


def test_packet_from_the_future_is_fatal(setup):
    client, _, receiver, _ = setup
    receiver.accept(chunk(0), client.address)
    with pytest.raises(ProtocolViolation, match="expecting 1"):
        receiver.accept(chunk(2, offset=1), client.address)


def test_first_packet_must_be_seq_zero(setup):
    client, _, receiver, _ = setup
    with pytest.raises(ProtocolViolation):
        receiver.accept(chunk(1), client.address)


def test_offset_gap_is_fatal(setup):
    client, _, receiver, _ = setup
    receiver.accept(chunk(0), client.address)
    with pytest.raises(ProtocolViolation, match="line 5"):
        receiver.accept(chunk(1, offset=5), client.address)


def test_end_is_acked_with_phase_sentinel(setup):
    client, server, receiver, _ = setup
    receiver.accept(chunk(0), client.address)
    assert receiver.accept(DataPacket.end(1).to_bytes(), client.address) is True
    assert receiver.accept(DataPacket.end(1).to_bytes(), client.address) is True

    assert acks(server) == [0, ACK_UPLOAD_DONE, ACK_UPLOAD_DONE]
    assert receiver.state.done
    assert receiver.state.items_completed == 1


def test_download_phase_sentinel(tmp_path):
    client, server = wire()
    receiver = SequencedReceiver(
        server, ItemRegistry(directory_sinks(tmp_path)), PhaseState(Phase.DOWNLOAD), grace_ms=0
    )
    receiver.accept(DataPacket.end(0).to_bytes(), client.address)
    assert acks(server) == [ACK_DOWNLOAD_DONE]


def test_garbage_and_acks_are_ignored(setup):
    client, server, receiver, _ = setup
    assert receiver.accept(b"\x00\x01junk", client.address) is False
    assert receiver.accept(Ack(0).to_bytes(), client.address) is False
    assert server.sent == []
    assert receiver.peer is None


def test_closed_item_set(tmp_path):
    client, server = wire()
    registry = ItemRegistry(directory_sinks(tmp_path), max_items=1)
    receiver = SequencedReceiver(server, registry, PhaseState(Phase.UPLOAD), grace_ms=0)
    receiver.accept(chunk(0, item="a.txt"), client.address)
    with pytest.raises(ProtocolViolation, match="configured set"):
        receiver.accept(chunk(1, item="b.txt"), client.address)


def test_run_until_end_then_linger(setup):
    client, server, receiver, tmp_path = setup
    receiver.grace_ms = 20
    server.inbox.extend(
        [
            (chunk(0, lines=("1",)), client.address),
            (chunk(0, lines=("1",)), client.address),
            (chunk(1, offset=1, lines=("2",)), client.address),
            (DataPacket.end(2).to_bytes(), client.address),
            (DataPacket.end(2).to_bytes(), client.address),
        ]
    )

    assert receiver.run() == client.address
    assert acks(server) == [0, 0, 1, ACK_UPLOAD_DONE, ACK_UPLOAD_DONE]
    assert receiver.metrics.end_ts is not None
    receiver.registry.close()
    assert (tmp_path / "a.txt").read_text() == "1\n2\n"


def test_run_without_a_peer_is_an_error(setup):
    _, _, receiver, _ = setup
    receiver.state.done = True
    with pytest.raises(RuntimeError, match="peer"):
        receiver.run()
