from __future__ import annotations

import contextlib
import fcntl
import os
import time
from pathlib import Path
from typing import Iterator

from .errors import LockError


LOCK_TIMEOUT_ENV = "PTK_LOCK_TIMEOUT_SECONDS"
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


def resolve_lock_timeout(explicit: float | None = None) -> float:
    if explicit is not None:
        return explicit
    value = os.environ.get(LOCK_TIMEOUT_ENV, "").strip()
    if not value:
        return DEFAULT_LOCK_TIMEOUT_SECONDS
    try:
        return float(value)
    except ValueError:
        return DEFAULT_LOCK_TIMEOUT_SECONDS


@contextlib.contextmanager
def advisory_lock(
    lock_path: Path,
    *,
    mode: str = "wait",
    timeout_seconds: float | None = None,
) -> Iterator[None]:
    # Sidecar lock file so writers to the same resort (or the shared catalog)
    # never interleave. The data files themselves are replaced freely.
    if mode not in {"fail", "wait"}:
        raise ValueError(f"invalid lock mode: {mode!r}")
    timeout = resolve_lock_timeout(timeout_seconds)

    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fh = lock_path.open("a+")
    try:
        start = time.monotonic()
        while True:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if mode == "fail":
                    raise LockError(f"resort data is locked: {lock_path}") from None
                if time.monotonic() - start >= timeout:
                    raise LockError(f"lock timeout after {timeout}s: {lock_path}") from None
                time.sleep(0.05)

        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\n")
        fh.flush()
        try:
            yield None
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
    finally:
        fh.close()
