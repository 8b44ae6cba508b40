"""Spotify Web API client that gathers every track of an artist."""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import requests

from metaraid.config import SpotifyConfig
from metaraid.fatal import fatal_on_error
from metaraid.track import FullerTrack

log = logging.getLogger(__name__)

API_URL = "https://api.spotify.com/v1"
TOKEN_URL = "https://accounts.spotify.com/api/token"
_PROBE_TRACK = "0VjIjW4GlUZAMYd2vXMi3b"
_PAGE_CAP = 100

T = TypeVar("T")


class ClientStatus(enum.Enum):
    AVAILABLE = "available"
    COLD = "cold"

    def __str__(self) -> str:
        return self.value


class MaxRetryDurationExceeded(Exception):
    """The API asked to wait longer than the allowed retry duration."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"retry after {retry_after}s exceeds max retry duration")
        self.retry_after = retry_after


class SpotifyApi:
    """Thin authenticated access to the Web API, retrying on rate limits."""

    def __init__(
        self,
        token: str,
        max_retry_duration: float = 3600.0,
        session: Any = None,
        base_url: str = API_URL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.token = token
        self.max_retry_duration = max_retry_duration
        self.session = session if session is not None else requests.Session()
        self.base_url = base_url.rstrip("/")
        self.sleep = sleep

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a path or absolute URL and return the decoded JSON."""
        if path.startswith(("http://", "https://")):
            url = path
        else:
            url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.token}"}
        while True:
            response = self.session.get(url, params=params, headers=headers, timeout=30)
            if response.status_code == 429:
                retry_after = float(response.headers.get("Retry-After", 1))
                if retry_after > self.max_retry_duration:
                    raise MaxRetryDurationExceeded(retry_after)
                self.sleep(retry_after)
                continue
            response.raise_for_status()
            return response.json()

    def next_page(self, page: dict[str, Any]) -> dict[str, Any] | None:
        """Fetch the page after ``page``, or None if it is the last."""
        url = page.get("next")
        if not url:
            return None
        return self.get(url)


def request_token(client_id: str, client_secret: str, session: Any = None) -> str:
    """Obtain an access token with the client-credentials flow."""
    session = session if session is not None else requests.Session()
    response = session.post(
        TOKEN_URL,
        data={"grant_type": "client_credentials"},
        auth=(client_id, client_secret),
        timeout=30,
    )
    response.raise_for_status()
    return response.json()["access_token"]


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def get_artists(tracks: Iterable[FullerTrack], main_artist: str) -> list[str]:
    """Distinct artist ids on the tracks, other than the main artist."""
    seen: dict[str, None] = {}
    for track in tracks:
        for artist in track.track.get("artists", []):
            artist_id = artist["id"]
            if artist_id != main_artist:
                seen.setdefault(artist_id, None)
    return list(seen)


def _collect_pages(api: SpotifyApi, page: dict[str, Any], items: list) -> int:
    requests_made = 0
    for _ in range(_PAGE_CAP):
        items.extend(page.get("items", []))
        following = api.next_page(page)
        if following is None:
            break
        page = following
        requests_made += 1
    return requests_made


@dataclass
class Client:
    api: SpotifyApi
    name: str = ""
    status: ClientStatus = ClientStatus.AVAILABLE
    cooldown: float = 0.0

    def update_status_auto(self) -> None:
        """Probe the API and mark the client cold if it is rate limited."""
        try:
            self.api.get(f"tracks/{_PROBE_TRACK}")
        except MaxRetryDurationExceeded as error:
            self.update_status(error)
            return
        self.status = ClientStatus.AVAILABLE

    def update_status(self, error: MaxRetryDurationExceeded | None) -> None:
        if error is None:
            return
        self.cooldown = error.retry_after
        self.status = ClientStatus.COLD

    def fetch_artist_tracks(self, artist_id: str) -> tuple[list[FullerTrack], int]:
        """Fetch all tracks of an artist's albums; return them and the request count."""
        api = self.api
        page = api.get(
            f"artists/{artist_id}/albums",
            {"include_groups": "album,single,compilation", "limit": 50},
        )
        count = 1
        albums: list[dict] = []
        count += _collect_pages(api, page, albums)

        simple_tracks: list[dict] = []
        for chunk in chunked(albums, 20):
            full = api.get("albums", {"ids": ",".join(a["id"] for a in chunk)})["albums"]
            count += 1
            for album in full:
                if album is None:
                    continue
                count += _collect_pages(api, album["tracks"], simple_tracks)

        artist_ids = list(
            dict.fromkeys(a["id"] for t in simple_tracks for a in t.get("artists", []))
        )
        all_artists: dict[str, dict] = {}
        for chunk in chunked(artist_ids, 50):
            found = api.get("artists", {"ids": ",".join(chunk)})["artists"]
            count += 1
            all_artists.update({a["id"]: a for a in found if a})

        result: list[FullerTrack] = []
        for chunk in chunked(simple_tracks, 100):
            ids = [t["id"] for t in chunk]
            features = api.get("audio-features", {"ids": ",".join(ids)})["audio_features"]
            count += 1
            full_tracks: list[dict] = []
            for sub in chunked(ids, 50):
                full_tracks.extend(api.get("tracks", {"ids": ",".join(sub)})["tracks"])
                count += 1
            for full_track, feature in zip(full_tracks, features):
                result.append(
                    FullerTrack(
                        track=full_track,
                        features=feature,
                        artists=[all_artists.get(a["id"]) for a in full_track.get("artists", [])],
                    )
                )
        return result, count


def new_clients(conf: SpotifyConfig) -> list[Client]:
    """Authenticate every configured key and probe its status."""
    session = requests.Session()
    clients = []
    for keys in conf.clients:
        with fatal_on_error("could not get token"):
            token = request_token(keys.client_id, keys.client_secret, session)
        api = SpotifyApi(token, conf.max_retry_duration, session)
        client = Client(api=api, name=keys.name)
        with fatal_on_error():
            client.update_status_auto()
        clients.append(client)
    log.info("Loaded Spotify api keys count=%d", len(clients))
    return clients