import fnmatch
import json
import sqlite3

import msgpack
import pytest

from metaraid.export import (
    PART_COLUMNS,
    TRACK_COLUMNS,
    create_tables,
    export,
    extract_unique_genres,
    get_image,
)
from metaraid.track import FullerTrack


class FakeRedis:
    """Key-value store paging its keys like SCAN."""

    def __init__(self, data, page=2):
        self.data = dict(data)
        self.page = page
        self.scan_calls = 0

    def scan(self, cursor=0, match=None, count=None):
        self.scan_calls += 1
        keys = sorted(k for k in self.data if match is None or fnmatch.fnmatch(k, match))
        chunk = keys[cursor:cursor + self.page]
        following = cursor + self.page
        return (following if following < len(keys) else 0), chunk

    def get(self, key):
        return self.data.get(key)


def _images(prefix):
    return [{"url": f"{prefix}-{n}"} for n in ("large", "medium", "small")]


def _full_track(track_id, with_features=True):
    track = {
        "id": track_id,
        "name": f"Song {track_id}",
        "artists": [{"id": "artistA", "name": "Artist A"}],
        "album": {
            "name": "Album",
            "album_type": "single",
            "release_date": "2021-05-07",
            "release_date_precision": "day",
            "images": _images("album"),
        },
        "popularity": 42,
        "explicit": True,
        "preview_url": None,
        "type": "track",
    }
    features = None
    if with_features:
        features = {
            "acousticness": 0.5,
            "danceability": 0.25,
            "energy": 0.75,
            "instrumentalness": 0.0,
            "liveness": 0.125,
            "speechiness": 0.0625,
            "valence": 0.5,
            "key": 7,
            "mode": 1,
            "tempo": 120.0,
            "time_signature": 4,
            "loudness": -6.5,
            "duration_ms": 200000,
        }
    artists = [
        {
            "id": "artistA",
            "genres": ["pop", "rock"],
            "followers": {"total": 1234},
            "popularity": 55,
            "images": _images("artist")[:1],
        },
        None,
        {"id": "artistB", "genres": ["rock", "jazz"]},
    ]
    return FullerTrack(track=track, features=features, artists=artists)


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    create_tables(connection)
    yield connection
    connection.close()


def test_get_image_in_range():
    images = _images("x")
    assert get_image(images, 0) == "x-large"
    assert get_image(images, 2) == "x-small"


def test_get_image_out_of_range_is_empty():
    assert get_image(_images("x")[:1], 1) == ""
    assert get_image([], 0) == ""
    assert get_image(None, 0) == ""


def test_extract_unique_genres_keeps_first_seen_order():
    artists = [{"genres": ["pop", "rock"]}, None, {"genres": ["rock", "jazz", "pop"]}]
    assert extract_unique_genres(artists) == ["pop", "rock", "jazz"]


def test_extract_unique_genres_empty():
    assert extract_unique_genres([None, {"genres": []}]) == []


def test_create_tables_is_idempotent(conn):
    create_tables(conn)
    track_cols = [row[1] for row in conn.execute("PRAGMA table_info(tracks)")]
    part_cols = [row[1] for row in conn.execute("PRAGMA table_info(tracks_parts)")]
    assert track_cols == [name for name, _ in TRACK_COLUMNS]
    assert part_cols == [name for name, _ in PART_COLUMNS]


def test_export_full_track_row(conn):
    record = _full_track("t1")
    rdb = FakeRedis({"tracks:t1": record.serialize()})
    assert export(conn, rdb) == 1
    conn.row_factory = sqlite3.Row
    row = conn.execute("SELECT * FROM tracks").fetchone()
    assert row["track_id"] == "t1"
    assert row["name"] == "Song t1"
    assert row["artist"] == "Artist A"
    assert row["artist_id"] == "artistA"
    assert row["album_type"] == "single"
    assert row["release_date"] == "2021-05-07"
    assert row["image_l"] == "album-large"
    assert row["image_s"] == "album-small"
    assert row["popularity"] == 42
    assert row["key"] == 7
    assert row["duration"] == 200000
    assert row["loudness"] == -6.5
    assert row["explicit"] == 1
    assert row["preview_url"] == ""
    assert json.loads(row["genres"]) == ["pop", "rock", "jazz"]
    assert row["artist_follower"] == 1234
    assert row["artist_popularity"] == 55
    assert row["artist_image_l"] == "artist-large"
    assert row["artist_image_m"] == ""


def test_export_track_without_features_goes_to_parts(conn):
    record = _full_track("t2", with_features=False)
    rdb = FakeRedis({"tracks:t2": record.serialize()})
    export(conn, rdb)
    assert conn.execute("SELECT count(*) FROM tracks").fetchone()[0] == 0
    assert conn.execute("SELECT * FROM tracks_parts").fetchall() == [
        ("t2", "Song t2", "Artist A")
    ]


def test_export_pages_through_all_keys_and_ignores_others(conn):
    data = {f"tracks:t{i}": _full_track(f"t{i}", with_features=i % 2 == 0).serialize() for i in range(5)}
    data["jobs:artistA"] = b"ignored"
    rdb = FakeRedis(data, page=2)
    assert export(conn, rdb) == 5
    assert rdb.scan_calls == 3
    full = conn.execute("SELECT count(*) FROM tracks").fetchone()[0]
    parts = conn.execute("SELECT count(*) FROM tracks_parts").fetchone()[0]
    assert (full, parts) == (3, 2)


@pytest.mark.parametrize(
    ("release", "precision", "expected"),
    [("1999", "year", "1999-01-01"), ("1999-03", "month", "1999-03-01"), ("bad", "day", None)],
)
def test_export_release_date_precision(conn, release, precision, expected):
    record = _full_track("t3")
    record.track["album"]["release_date"] = release
    record.track["album"]["release_date_precision"] = precision
    export(conn, FakeRedis({"tracks:t3": record.serialize()}))
    assert conn.execute("SELECT release_date FROM tracks").fetchone()[0] == expected


def test_export_rejects_invalid_record(conn):
    rdb = FakeRedis({"tracks:bad": msgpack.packb(5)})
    with pytest.raises(ValueError):
        export(conn, rdb)


def test_export_empty_store(conn):
    assert export(conn, FakeRedis({})) == 0
    assert conn.execute("SELECT count(*) FROM tracks").fetchone()[0] == 0