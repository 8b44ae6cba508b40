"""Export the tracks stored in Redis into a SQLite table."""

from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
import time
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from metaraid.config import load
from metaraid.database import new_redis
from metaraid.fatal import fatal_on_error
from metaraid.track import FullerTrack

log = logging.getLogger(__name__)

_BATCH_SIZE = 1000
_TRACK_PREFIX = "tracks:"

TRACK_COLUMNS: tuple[tuple[str, str], ...] = (
    ("track_id", "TEXT"),
    ("name", "TEXT"),
    ("artist", "TEXT"),
    ("artist_id", "TEXT"),
    ("album", "TEXT"),
    ("album_type", "TEXT"),
    ("release_date", "DATE"),
    ("image_l", "TEXT"),
    ("image_m", "TEXT"),
    ("image_s", "TEXT"),
    ("popularity", "INTEGER"),
    ("acousticness", "REAL"),
    ("danceability", "REAL"),
    ("energy", "REAL"),
    ("instrumentalness", "REAL"),
    ("liveness", "REAL"),
    ("speechiness", "REAL"),
    ("valence", "REAL"),
    ("key", "INTEGER"),
    ("mode", "INTEGER"),
    ("tempo", "REAL"),
    ("time_signature", "INTEGER"),
    ("loudness", "REAL"),
    ("duration", "INTEGER"),
    ("explicit", "BOOLEAN"),
    ("preview_url", "TEXT"),
    ("type", "TEXT"),
    ("genres", "TEXT"),
    ("artist_follower", "INTEGER"),
    ("artist_popularity", "INTEGER"),
    ("artist_image_l", "TEXT"),
    ("artist_image_m", "TEXT"),
    ("artist_image_s", "TEXT"),
)

PART_COLUMNS: tuple[tuple[str, str], ...] = (
    ("track_id", "TEXT"),
    ("name", "TEXT"),
    ("artis", "TEXT"),
)

_DATE_LAYOUTS = {"day": "%Y-%m-%d", "month": "%Y-%m", "year": "%Y"}


def _create_sql(table: str, columns: Sequence[tuple[str, str]]) -> str:
    body = ", ".join(f'"{name}" {kind}' for name, kind in columns)
    return f"CREATE TABLE IF NOT EXISTS {table} ({body})"


def _insert_sql(table: str, columns: Sequence[tuple[str, str]]) -> str:
    names = ", ".join(f'"{name}"' for name, _ in columns)
    marks = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({names}) VALUES ({marks})"


_INSERT_TRACK = _insert_sql("tracks", TRACK_COLUMNS)
_INSERT_PART = _insert_sql("tracks_parts", PART_COLUMNS)


def get_image(images: Sequence[dict[str, Any]] | None, index: int) -> str:
    """URL of the image at ``index``, or an empty string if there is none."""
    if images and len(images) > index:
        return images[index].get("url") or ""
    return ""


def extract_unique_genres(artists: Iterable[dict[str, Any] | None]) -> list[str]:
    """Genres of all artists in first-seen order, without repeats."""
    seen: dict[str, None] = {}
    for artist in artists:
        if artist is None:
            continue
        for genre in artist.get("genres") or []:
            seen.setdefault(genre, None)
    return list(seen)


def _release_date(album: dict[str, Any]) -> str | None:
    layout = _DATE_LAYOUTS.get(album.get("release_date_precision") or "")
    if layout is None:
        return None
    try:
        return datetime.strptime(album.get("release_date") or "", layout).date().isoformat()
    except ValueError:
        return None


def _first_artist(items: Sequence[Any] | None) -> dict[str, Any]:
    if items and items[0] is not None:
        return items[0]
    return {}


def create_tables(conn: sqlite3.Connection) -> None:
    """Create the ``tracks`` and ``tracks_parts`` tables if they are missing."""
    conn.execute(_create_sql("tracks", TRACK_COLUMNS))
    conn.execute(_create_sql("tracks_parts", PART_COLUMNS))
    conn.commit()


def _track_row(record: FullerTrack) -> tuple[Any, ...]:
    track = record.track
    features = record.features or {}
    album = track.get("album") or {}
    artist = _first_artist(track.get("artists"))
    full_artist = _first_artist(record.artists)
    album_images = album.get("images")
    artist_images = full_artist.get("images")
    return (
        track.get("id"),
        track.get("name"),
        artist.get("name"),
        artist.get("id"),
        album.get("name"),
        album.get("album_type"),
        _release_date(album),
        get_image(album_images, 0),
        get_image(album_images, 1),
        get_image(album_images, 2),
        int(track.get("popularity") or 0),
        features.get("acousticness"),
        features.get("danceability"),
        features.get("energy"),
        features.get("instrumentalness"),
        features.get("liveness"),
        features.get("speechiness"),
        features.get("valence"),
        int(features.get("key") or 0),
        int(features.get("mode") or 0),
        features.get("tempo"),
        int(features.get("time_signature") or 0),
        features.get("loudness"),
        int(features.get("duration_ms") or 0),
        bool(track.get("explicit")),
        track.get("preview_url") or "",
        track.get("type") or "",
        json.dumps(extract_unique_genres(record.artists)),
        int((full_artist.get("followers") or {}).get("total") or 0),
        int(full_artist.get("popularity") or 0),
        get_image(artist_images, 0),
        get_image(artist_images, 1),
        get_image(artist_images, 2),
    )


def _part_row(record: FullerTrack) -> tuple[Any, ...]:
    track = record.track
    return (
        track.get("id"),
        track.get("name"),
        _first_artist(track.get("artists")).get("name"),
    )


def export(conn: sqlite3.Connection, rdb: Any) -> int:
    """Copy every stored track into the tables; return how many were read."""
    cursor = 0
    exported = 0
    while True:
        cursor, keys = rdb.scan(cursor=cursor, match=_TRACK_PREFIX + "*", count=_BATCH_SIZE)
        cursor = int(cursor)
        for key in keys:
            data = rdb.get(key)
            if data is None:
                raise LookupError(f"key {key!r} vanished during export")
            record = FullerTrack.deserialize(data)
            if record.features is None:
                conn.execute(_INSERT_PART, _part_row(record))
            else:
                conn.execute(_INSERT_TRACK, _track_row(record))
            exported += 1
        conn.commit()
        log.info("fetches tracks count=%d offset=%d", len(keys), cursor)
        if cursor == 0:
            break
    return exported


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="metaraid-export")
    parser.add_argument("--config", default="config.yaml", help="path of the YAML config")
    parser.add_argument("--database", default="meta_raid.db", help="SQLite file to write")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    with fatal_on_error("Failed to load configs"):
        conf = load(args.config)

    rdb = new_redis(conf.redis)
    try:
        conn = sqlite3.connect(args.database)
        try:
            with fatal_on_error("failed to create tables"):
                create_tables(conn)
            start = time.monotonic()
            with fatal_on_error():
                export(conn, rdb)
            duration = time.monotonic() - start
            (count,) = conn.execute("SELECT count(*) FROM tracks").fetchone()
            per_sec = count / duration if duration > 0 else float(count)
            log.info(
                "Export done row_count=%d duration=%.3fs per_sec=%.1f",
                count,
                duration,
                per_sec,
            )
        finally:
            conn.close()
    finally:
        rdb.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())