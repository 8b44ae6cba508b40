"""Configuration loading from a YAML file and environment variables."""

from __future__ import annotations

import logging
import os
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import yaml

log = logging.getLogger(__name__)

_NS = {"ns": 1, "us": 10**3, "µs": 10**3, "μs": 10**3, "ms": 10**6, "s": 10**9,
       "m": 60 * 10**9, "h": 3600 * 10**9}
_PART = re.compile(r"(\d*(?:\.\d*)?)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``1h30m`` or ``250ms`` into seconds."""
    rest = text.strip()
    sign = -1 if rest[:1] == "-" else 1
    if rest[:1] in ("+", "-"):
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(f"invalid duration {text!r}")
    total, pos = 0.0, 0
    while pos < len(rest):
        match = _PART.match(rest, pos)
        if not match or match.group(1) in ("", "."):
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _NS[match.group(2)]
        pos = match.end()
    return sign * total / 1e9


def _fraction(ns: int, unit: int) -> str:
    whole, rest = divmod(ns, unit)
    if not rest:
        return str(whole)
    return f"{whole}.{str(rest).zfill(len(str(unit)) - 1).rstrip('0')}"


def format_duration(seconds: float) -> str:
    """Format seconds the way durations are written in the config file."""
    ns = round(seconds * 1e9)
    if ns == 0:
        return "0s"
    sign, ns = ("-" if ns < 0 else ""), abs(ns)
    if ns < 10**3:
        return f"{sign}{ns}ns"
    if ns < 10**6:
        return f"{sign}{_fraction(ns, 10**3)}µs"
    if ns < 10**9:
        return f"{sign}{_fraction(ns, 10**6)}ms"
    hours, rest = divmod(ns, _NS["h"])
    minutes, rest = divmod(rest, _NS["m"])
    secs = _fraction(rest, 10**9) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}"
    return f"{sign}{minutes}m{secs}" if minutes else f"{sign}{secs}"


def _as_int(value: Any) -> int:
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip() or "0", 0)
        except ValueError:
            pass
    raise ValueError(f"cannot use {value!r} as an integer")


def _as_str(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"cannot use {value!r} as a string")


@dataclass
class RedisConfig:
    database: int = 0
    host: str = "127.0.0.1"
    port: int = 6379
    pool_size: int = 10
    min_idle_conns: int = 3


@dataclass
class ScraperConfig:
    seed_artist_id: str = "5D8TBtxnP5GZm9wUBQ8OTc"
    worker_count: int = 5


@dataclass
class SpotifyClientKeys:
    client_id: str = ""
    client_secret: str = ""
    name: str = ""


@dataclass
class SpotifyConfig:
    clients: list[SpotifyClientKeys] = field(default_factory=list)
    max_retry_duration: float = 3600.0


@dataclass
class Config:
    redis: RedisConfig = field(default_factory=RedisConfig)
    scraper: ScraperConfig = field(default_factory=ScraperConfig)
    spotify: SpotifyConfig = field(default_factory=SpotifyConfig)

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration keyed as in the YAML file."""
        r, s = self.redis, self.scraper
        return {
            "redis": {"database": r.database, "host": r.host, "port": r.port,
                      "poolSize": r.pool_size, "minIdleConns": r.min_idle_conns},
            "scraper": {"seedArtistId": s.seed_artist_id, "workerCount": s.worker_count},
            "spotify": {
                "clients": [{"clientId": c.client_id, "clientSecret": c.client_secret,
                             "name": c.name} for c in self.spotify.clients],
                "maxRetryDuration": format_duration(self.spotify.max_retry_duration),
            },
        }


def _mapping(value: Any, where: str) -> Mapping:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{where}' expected a map, got {value!r}")
    return value


def _convert(attr: str, current: Any, value: Any, where: str, strict: bool) -> Any:
    if attr == "clients":
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError(f"'{where}' expected a list, got {value!r}")
        clients = []
        for item in value:
            _apply(keys := SpotifyClientKeys(), item, where, strict)
            clients.append(keys)
        return clients
    if attr == "max_retry_duration":
        return parse_duration(value) if isinstance(value, str) else _as_int(value) / 1e9
    return _as_int(value) if isinstance(current, int) else _as_str(value)


def _apply(target: Any, data: Any, where: str, strict: bool) -> None:
    names = {f.name.replace("_", "").lower(): f.name for f in fields(target)}
    for key, value in _mapping(data, where).items():
        path = f"{where}.{key}" if where else str(key)
        attr = names.get(str(key).lower())
        if attr is None:
            if strict:
                raise ValueError(f"invalid key '{path}'")
            continue
        current = getattr(target, attr)
        if is_dataclass(current):
            _apply(current, value, path, strict)
        else:
            setattr(target, attr, _convert(attr, current, value, path, strict))


def _decode(data: Mapping, strict: bool) -> Config:
    conf = Config()
    _apply(conf, data, "", strict)
    return conf


def _lower_keys(data: Any) -> Any:
    if isinstance(data, Mapping):
        return {str(k).lower(): _lower_keys(v) for k, v in data.items()}
    return data


def load(path: str | os.PathLike = "config.yaml", environ: Mapping[str, str] | None = None) -> Config:
    """Load the config file, then let environment variables override it."""
    log.info("Loading configs")
    environ = os.environ if environ is None else environ
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(raw, Mapping):
        raise ValueError("config file must hold a map")
    _decode(raw, strict=True)

    merged = _lower_keys(raw)
    for name, value in environ.items():
        parts = name.lower().replace("_", ".").split(".")
        if not all(parts):
            continue
        node = merged
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value.split(",") if "," in value else value
    return _decode(merged, strict=False)


def dump_default() -> str:
    """Return the default configuration as YAML."""
    return yaml.safe_dump(Config().to_dict(), sort_keys=False, allow_unicode=True)


def main(argv: list[str] | None = None) -> int:
    sys.stdout.write(dump_default())
    return 0