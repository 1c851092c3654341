"""Tests for line formatting and fan-out delivery."""
from roomchatd.broadcast import Broadcaster, format_chat_line, format_notice
from roomchatd.config import RelayRuntimeConfig
from roomchatd.registry import Registry
from roomchatd.stats import StatsManager


class _BrokenHandle:
    conn_id = 999

    def send_line(self, text):
        raise OSError("broken pipe")


def _setup():
    registry = Registry(RelayRuntimeConfig())
    stats = StatsManager(registry)
    return registry, stats, Broadcaster(registry, stats)


def test_format_chat_line() -> None:
    """Chat lines carry the room and sender."""
    assert format_chat_line("general", "alice", "hello") == "[general] alice: hello"


def test_format_notice_prefixes_every_line() -> None:
    """Each line of a notice gets the server tag."""
    assert format_notice("hi") == "[SERVER] hi"
    assert format_notice("Available rooms:\n  - general") == (
        "[SERVER] Available rooms:\n[SERVER]   - general"
    )


def test_broadcast_excludes_sender(conn_factory) -> None:
    """Room broadcasts skip the sender and other rooms."""
    registry, stats, broadcaster = _setup()
    (alice, alice_peer), (bob, bob_peer), (carol, carol_peer) = (
        conn_factory(),
        conn_factory(),
        conn_factory(),
    )
    for conn, name in ((alice, "alice"), (bob, "bob"), (carol, "carol")):
        registry.register(conn, name)
    registry.join_room(alice, "general")
    registry.join_room(bob, "general")
    registry.join_room(carol, "games")

    delivered = broadcaster.broadcast("general", "[general] alice: hi", exclude=alice)

    assert delivered == 1
    assert bob_peer.readline() == "[general] alice: hi"
    assert alice_peer.pending() == []
    assert carol_peer.pending() == []
    assert stats.get("deliveries") == 1


def test_broadcast_to_unknown_or_missing_room_delivers_nothing(conn_factory) -> None:
    """No room or a pruned room has no recipients."""
    _, _, broadcaster = _setup()

    assert broadcaster.broadcast(None, "x") == 0
    assert broadcaster.broadcast("nowhere", "x") == 0


def test_broadcast_skips_failed_recipient(conn_factory) -> None:
    """A recipient whose write raises does not stop the others."""
    registry, stats, broadcaster = _setup()
    alice, alice_peer = conn_factory()
    bob, bob_peer = conn_factory()
    registry.register(alice, "alice")
    registry.register(bob, "bob")
    registry.join_room(alice, "general")
    registry.join_room(bob, "general")
    broken = _BrokenHandle()
    registry.room_manager.add_member("general", broken)

    delivered = broadcaster.broadcast("general", "line")

    assert delivered == 2
    assert alice_peer.readline() == "line"
    assert bob_peer.readline() == "line"
    assert stats.get("send_failures") == 1


def test_broadcast_counts_closed_connection_as_failure(conn_factory) -> None:
    """Writes to a closed connection are counted as failures."""
    registry, stats, broadcaster = _setup()
    alice, _ = conn_factory()
    bob, bob_peer = conn_factory()
    registry.register(alice, "alice")
    registry.register(bob, "bob")
    registry.join_room(alice, "general")
    registry.join_room(bob, "general")
    alice.close()

    assert broadcaster.broadcast("general", "still here") == 1
    assert bob_peer.readline() == "still here"
    assert stats.get("send_failures") == 1


def test_broadcast_to_all_reaches_lobby_and_rooms(conn_factory) -> None:
    """Relay-wide delivery includes users outside any room."""
    registry, _, broadcaster = _setup()
    alice, alice_peer = conn_factory()
    bob, bob_peer = conn_factory()
    carol, carol_peer = conn_factory()
    registry.register(alice, "alice")
    registry.register(bob, "bob")
    registry.register(carol, "carol")
    registry.join_room(bob, "games")

    assert broadcaster.broadcast_to_all("[SERVER] carol has connected", exclude=carol) == 2
    assert alice_peer.readline() == "[SERVER] carol has connected"
    assert bob_peer.readline() == "[SERVER] carol has connected"
    assert carol_peer.pending() == []


def test_broadcast_notice_formats_text(conn_factory) -> None:
    """Room notices are tagged as server lines."""
    registry, _, broadcaster = _setup()
    alice, alice_peer = conn_factory()
    registry.register(alice, "alice")
    registry.join_room(alice, "general")

    assert broadcaster.broadcast_notice("general", "bob joined the room") == 1
    assert alice_peer.readline() == "[SERVER] bob joined the room"


def test_notice_to_single_connection(conn_factory) -> None:
    """A multi-line notice arrives as tagged lines."""
    _, _, broadcaster = _setup()
    conn, peer = conn_factory()

    assert broadcaster.notice(conn, "one\ntwo")
    assert peer.readline() == "[SERVER] one"
    assert peer.readline() == "[SERVER] two"
