from __future__ import annotations

import hashlib
import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path


PLACEHOLDER_SHA256 = "0" * 64


def iso_from_timestamp(timestamp: float) -> str:
    moment = datetime.fromtimestamp(timestamp, timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    """UTC timestamp in the millisecond ISO-8601 form the app reads (`...Z`)."""

    return iso_from_timestamp(datetime.now(timezone.utc).timestamp())


def pretty_json_bytes(obj: object) -> bytes:
    """Encode JSON the way every published and versioned document is stored.

    - UTF-8
    - insertion key ordering
    - two-space indent, trailing newline
    """

    return (json.dumps(obj, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    # Readers see either the old file or the new one, never a torn write.
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def copy_file_atomic(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_name(f".{destination.name}.{os.getpid()}.tmp")
    try:
        shutil.copyfile(source, tmp_path)
        os.replace(tmp_path, destination)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def write_json(path: Path, obj: object) -> bytes:
    data = pretty_json_bytes(obj)
    write_bytes(path, data)
    return data


def write_json_atomic(path: Path, obj: object) -> bytes:
    data = pretty_json_bytes(obj)
    write_bytes_atomic(path, data)
    return data


def read_json(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


def file_size_bytes(path: Path) -> int:
    return path.stat().st_size


def is_regular_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


def is_non_empty_file(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def is_sha256_hex(value: object) -> bool:
    return (
        isinstance(value, str)
        and len(value) == 64
        and all(c in "0123456789abcdef" for c in value)
    )
