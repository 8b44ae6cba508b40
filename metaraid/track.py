"""A track bundled with its audio features and full artists."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import msgpack


@dataclass
class FullerTrack:
    track: dict[str, Any]
    features: dict[str, Any] | None = None
    artists: list[dict[str, Any] | None] = field(default_factory=list)

    def serialize(self) -> bytes:
        """Encode the track as MessagePack."""
        return msgpack.packb({"Track": self.track, "Features": self.features, "Artists": self.artists})

    @classmethod
    def deserialize(cls, data: bytes) -> FullerTrack:
        """Decode a track written by :meth:`serialize`."""
        obj = msgpack.unpackb(data)
        if not isinstance(obj, dict) or "Track" not in obj:
            raise ValueError("not a serialized track")
        return cls(obj["Track"], obj.get("Features"), list(obj.get("Artists") or []))