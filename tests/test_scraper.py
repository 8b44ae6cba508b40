import queue
import threading
import time
from collections import defaultdict

import pytest

from metaraid.config import ScraperConfig
from metaraid.scraper import Scraper, Worker, WorkerStatus
from metaraid.spotify import Client, ClientStatus, MaxRetryDurationExceeded
from metaraid.track import FullerTrack

SEED = "seedartist"
OTHER = "otherartist"
TRACK = {"id": "track1", "name": "Song", "artists": [{"id": SEED}, {"id": OTHER}]}


def _s(value):
    return value.decode() if isinstance(value, bytes) else str(value)


class FakePipeline:
    def __init__(self, fake):
        self.fake = fake
        self.ops = []

    def srem(self, key, *members):
        self.ops.append(lambda: self.fake.sets[key].difference_update(members))

    def sadd(self, key, *members):
        self.ops.append(lambda: self.fake.sets[key].update(members))

    def hset(self, name, key, value):
        self.ops.append(lambda: self.fake.hashes[name].__setitem__(key, value))

    def set(self, key, value):
        self.ops.append(lambda: self.fake.strings.__setitem__(key, value))

    def execute(self):
        with self.fake.lock:
            return [op() for op in self.ops]


class FakeRedis:
    def __init__(self):
        self.strings = {}
        self.hashes = defaultdict(dict)
        self.sets = defaultdict(set)
        self.lock = threading.Lock()

    def scard(self, key):
        with self.lock:
            return len(self.sets[key])

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def eval(self, script, numkeys, *args):
        keys = [_s(a) for a in args[:numkeys]]
        argv = [_s(a) for a in args[numkeys:]]
        with self.lock:
            if "HSETNX" in script:
                out = []
                for key in argv:
                    if "status" in self.hashes[key]:
                        out.append(0)
                    else:
                        self.hashes[key]["status"] = "pending"
                        self.sets[keys[0]].add(key)
                        out.append(1)
                return out
            if "SPOP" in script:
                popped = []
                for _ in range(int(argv[0])):
                    if not self.sets[keys[0]]:
                        break
                    popped.append(self.sets[keys[0]].pop())
                for job in popped:
                    self.hashes["jobs:" + job]["status"] = "working"
                    self.sets[keys[1]].add(job)
                return [job.encode() for job in popped]
            if "SMEMBERS" in script:
                stuck = list(self.sets[keys[0]])
                for job in stuck:
                    self.sets[keys[1]].add(job)
                    self.hashes["jobs:" + job]["status"] = "pending"
                self.sets.pop(keys[0], None)
                return len(stuck)
        raise AssertionError("unexpected script")


class FakeApi:
    def __init__(self, error=None):
        self.error = error

    def get(self, path, params=None):
        if self.error is not None:
            raise self.error
        if path == f"artists/{SEED}/albums":
            return {"items": [{"id": "album1"}], "next": None}
        if path.startswith("artists/"):
            return {"items": [], "next": None}
        if path == "albums":
            return {"albums": [{"id": "album1", "tracks": {"items": [TRACK], "next": None}}]}
        if path == "artists":
            return {"artists": [{"id": i, "genres": []} for i in params["ids"].split(",")]}
        if path == "audio-features":
            return {"audio_features": [{"id": "track1", "tempo": 120.0}]}
        if path == "tracks":
            return {"tracks": [TRACK]}
        raise AssertionError(path)

    def next_page(self, page):
        return None


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def make_scraper(rdb, clients):
    return Scraper(
        clients,
        rdb,
        ScraperConfig(seed_artist_id=SEED),
        poll_interval=0.05,
        idle_wait=0.05,
        manage_interval=0.05,
        stats_interval=0.05,
    )


def test_scraper_processes_seed_and_discovered_artists():
    rdb = FakeRedis()
    scraper = make_scraper(rdb, [Client(api=FakeApi(), name="one")])
    scraper.start()
    try:
        assert wait_for(lambda: rdb.sets["jobs_done"] == {SEED, OTHER})
        assert scraper.workers[0].status is WorkerStatus.RUNNING
    finally:
        scraper.stop()
    stored = FullerTrack.deserialize(rdb.strings["tracks:track1"])
    assert stored.track == TRACK
    assert stored.features == {"id": "track1", "tempo": 120.0}
    assert [a["id"] for a in stored.artists] == [SEED, OTHER]
    assert scraper.exit_code == 0
    assert not any(t.is_alive() for w in scraper.workers for t in w.threads)


def test_cold_key_stops_worker_and_requeues_job():
    rdb = FakeRedis()
    client = Client(api=FakeApi(error=MaxRetryDurationExceeded(30.0)), name="one")
    scraper = make_scraper(rdb, [client])
    scraper.start()
    try:
        assert scraper.wait(5.0)
    finally:
        scraper.stop()
    assert client.status is ClientStatus.COLD
    assert client.cooldown == 30.0
    assert scraper.workers[0].status is WorkerStatus.STOPPED
    assert rdb.sets["jobs_done"] == set()


def test_fatal_error_in_worker_requests_exit():
    rdb = FakeRedis()
    scraper = make_scraper(rdb, [Client(api=FakeApi(error=RuntimeError("boom")))])
    scraper.start()
    try:
        assert scraper.wait(5.0)
    finally:
        scraper.stop()
    assert scraper.exit_code == 1
    assert scraper.workers[0].status is WorkerStatus.STOPPED


def test_cold_clients_get_no_worker():
    rdb = FakeRedis()
    cold = Client(api=FakeApi(), name="cold", status=ClientStatus.COLD, cooldown=60.0)
    scraper = make_scraper(rdb, [cold])
    assert scraper.workers == []
    scraper.start()
    assert scraper.wait(0) is True
    scraper.stop()
    assert scraper.exit_code == 0
    assert rdb.sets["jobs_pending"] == set()


def test_scraper_waits_until_done():
    scraper = make_scraper(FakeRedis(), [Client(api=FakeApi())])
    assert scraper.wait(0.01) is False


def test_worker_stop_and_no_restart():
    worker = Worker(Client(api=FakeApi()), "0", FakeRedis(), poll_interval=0.05)
    assert worker.status is WorkerStatus.INITIALIZED
    worker.stop()
    assert worker.status is WorkerStatus.STOPPED
    worker.start(queue.Queue())
    assert worker.status is WorkerStatus.STOPPED
    assert worker.threads == []


@pytest.mark.parametrize("count", [1, 3])
def test_one_worker_per_available_client(count):
    clients = [Client(api=FakeApi(), name=str(i)) for i in range(count)]
    scraper = make_scraper(FakeRedis(), clients)
    assert [w.id for w in scraper.workers] == [str(i) for i in range(count)]