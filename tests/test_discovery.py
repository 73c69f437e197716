import asyncio
import time

from blake3 import blake3

from topicchat.discovery import dht_collect_peers, dht_reannounce_loop, info_hash_for, topic_id_for


class FakeDht:
    def __init__(self, batches=(), hang=False, fail_announces=0, explode=False):
        self.batches = list(batches)
        self.hang = hang
        self.explode = explode
        self.fail_announces = fail_announces
        self.announces = []

    async def announce_peer(self, info_hash, port):
        self.announces.append((info_hash, port))
        if self.fail_announces:
            self.fail_announces -= 1
            raise ConnectionError("bootstrap unreachable")

    async def get_peers(self, info_hash):
        for batch in self.batches:
            await asyncio.sleep(0)
            yield batch
        if self.explode:
            raise ConnectionError("lookup failed")
        if self.hang:
            await asyncio.Event().wait()


def test_info_hash_is_deterministic_and_topic_specific():
    a = info_hash_for("room-42")

    assert len(a) == 20
    assert a == info_hash_for("room-42")
    assert a == blake3(b"room-42").digest()[:20]
    assert a != info_hash_for("room-43")
    assert topic_id_for("room-42")[:20] == a
    assert len(topic_id_for("room-42")) == 32


def test_collect_dedupes_and_stops_at_target():
    dht = FakeDht(batches=[
        [("10.0.0.1", 4000), ("10.0.0.1", 4000)],
        [("10.0.0.2", 4000), ("10.0.0.1", 4000)],
        [("10.0.0.3", 4000)],
        [("10.0.0.4", 4000)],
    ], hang=True)

    peers = asyncio.run(dht_collect_peers(dht, info_hash_for("room-42"), 3, 5.0))

    assert peers == [("10.0.0.1", 4000), ("10.0.0.2", 4000), ("10.0.0.3", 4000)]


def test_collect_returns_partial_set_at_deadline():
    dht = FakeDht(batches=[[("10.0.0.1", 1), ("10.0.0.1", 1)]], hang=True)

    started = time.monotonic()
    peers = asyncio.run(dht_collect_peers(dht, b"\x00" * 20, 10, 0.3))

    assert peers == [("10.0.0.1", 1)]
    assert time.monotonic() - started < 1.5


def test_collect_empty_dht_returns_empty_by_deadline():
    started = time.monotonic()
    peers = asyncio.run(dht_collect_peers(FakeDht(hang=True), b"\x00" * 20, 5, 0.2))

    assert peers == []
    assert time.monotonic() - started < 1.5


def test_collect_survives_exhausted_and_failing_streams():
    assert asyncio.run(dht_collect_peers(FakeDht(), b"\x00" * 20, 5, 1.0)) == []

    failing = FakeDht(batches=[[("10.0.0.9", 9)]], explode=True)
    assert asyncio.run(dht_collect_peers(failing, b"\x00" * 20, 5, 1.0)) == [("10.0.0.9", 9)]


def test_reannounce_loop_keeps_going_after_failures():
    dht = FakeDht(fail_announces=2)

    async def scenario():
        task = asyncio.create_task(dht_reannounce_loop(dht, b"\x01" * 20, 4242, 0.01))
        await asyncio.sleep(0.2)
        assert not task.done()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(scenario())

    assert len(dht.announces) >= 4
    assert all(entry == (b"\x01" * 20, 4242) for entry in dht.announces)


class EagerFailDht(FakeDht):
    def get_peers(self, info_hash):
        raise ConnectionError("no bootstrap nodes")


def test_collect_keeps_host_and_port_of_ipv6_entries():
    dht = FakeDht(batches=[
        [("fe80::1", 4000, 0, 0), ("fe80::1", 4000, 0, 2)],
        [("10.0.0.1", "4001"), ("bad",), None, ("10.0.0.2", 0)],
    ])

    peers = asyncio.run(dht_collect_peers(dht, b"\x00" * 20, 5, 1.0))

    assert peers == [("fe80::1", 4000), ("10.0.0.1", 4001)]


def test_collect_returns_empty_when_lookup_fails_immediately():
    assert asyncio.run(dht_collect_peers(EagerFailDht(), b"\x00" * 20, 5, 1.0)) == []
