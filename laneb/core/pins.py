"""Content pins and the aggregate bundle hash."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class Pin:
    path: str
    sha256: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "sha256": self.sha256}


def _coerce(item: Pin | Mapping[str, Any]) -> tuple[str, str] | None:
    if isinstance(item, Pin):
        path, sha = item.path, item.sha256
    elif isinstance(item, Mapping):
        path, sha = item.get("path"), item.get("sha256")
    else:
        return None
    if not isinstance(path, str) or not path.strip():
        return None
    if not isinstance(sha, str) or not sha.strip():
        return None
    return path.strip(), sha.strip()


def normalize_pins(pins: Iterable[Pin | Mapping[str, Any]]) -> list[Pin]:
    """Drop empty entries, keep the last sha per path, sort by path."""
    unique: dict[str, str] = {}
    for item in pins:
        coerced = _coerce(item)
        if coerced is not None:
            unique[coerced[0]] = coerced[1]
    return [Pin(path=path, sha256=unique[path]) for path in sorted(unique)]


def compute_bundle_hash(pins: Iterable[Pin | Mapping[str, Any]]) -> str:
    digest = hashlib.sha256()
    for pin in normalize_pins(pins):
        digest.update(f"{pin.path}\n".encode("utf-8"))
        digest.update(pin.sha256.encode("utf-8"))
        digest.update(b"\n---\n")
    return digest.hexdigest()
