"""JSON artifact IO: hashing, tolerant reads, atomic writes, and append-only logs."""

from __future__ import annotations

import hashlib
import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from laneb.core.errors import InvalidFormat, MissingArtifact


def sha256_hex(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    return sha256_hex(path.read_bytes())


def now_iso(now: datetime | None = None) -> str:
    resolved = now if now is not None else datetime.now(UTC)
    if resolved.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return resolved.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_iso8601(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp must include timezone: {value}")
    return parsed.astimezone(UTC)


def read_text_if_exists(path: Path) -> str | None:
    """Return the file text, or None when the file is absent.

    Raises:
        InvalidFormat: when the file is not valid UTF-8.
    """
    # newline="" keeps the exact bytes that pins are computed over.
    try:
        with open(path, "r", encoding="utf-8", newline="") as file_handle:
            return file_handle.read()
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise InvalidFormat(f"{path} is not valid UTF-8 (byte {exc.start})", path=str(path)) from exc


def read_json_if_exists(path: Path) -> Any | None:
    """Return parsed JSON, or None when the file is absent.

    Raises:
        InvalidFormat: when the file exists but is not valid JSON.
    """
    text = read_text_if_exists(path)
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidFormat(f"invalid JSON in {path}: {exc.msg}", path=str(path)) from exc


def read_json_object(path: Path, *, required: bool = True) -> dict[str, Any] | None:
    """Read a JSON object artifact.

    Raises:
        MissingArtifact: when `required` and the file is absent.
        InvalidFormat: when the content is not a JSON object.
    """
    payload = read_json_if_exists(path)
    if payload is None:
        if required:
            raise MissingArtifact(f"missing artifact: {path}", path=str(path))
        return None
    if not isinstance(payload, dict):
        raise InvalidFormat(f"expected a JSON object in {path}", path=str(path))
    return payload


def stable_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=True, indent=2, sort_keys=True) + "\n"


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(f"{path.suffix}.tmp")
    with temp_path.open("w", encoding="utf-8") as file_handle:
        file_handle.write(text)
        file_handle.flush()
        os.fsync(file_handle.fileno())
    os.replace(temp_path, path)


def write_json_atomic(path: Path, payload: Any) -> None:
    write_text_atomic(path, stable_dumps(payload))


def append_jsonl(path: Path, record: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    serialized = json.dumps(record, ensure_ascii=True, separators=(",", ":"), sort_keys=True)
    with path.open("a", encoding="utf-8") as file_handle:
        file_handle.write(serialized)
        file_handle.write("\n")
        file_handle.flush()
        os.fsync(file_handle.fileno())


def read_jsonl(path: Path) -> list[dict[str, Any]]:
    text = read_text_if_exists(path)
    if not text:
        return []
    records: list[dict[str, Any]] = []
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            raise InvalidFormat(f"invalid JSON at {path}:{line_number}", path=str(path)) from exc
        if not isinstance(record, dict):
            raise InvalidFormat(f"record at {path}:{line_number} must be an object", path=str(path))
        records.append(record)
    return records
