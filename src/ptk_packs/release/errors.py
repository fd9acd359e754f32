from __future__ import annotations

from typing import Any


class ReleaseError(RuntimeError):
    """Base error carrying a stable, machine-readable code."""

    default_code = "COMMAND_FAILED"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.details = details


class CommandError(ReleaseError):
    """Invalid arguments or flag combinations. Never retried."""

    default_code = "INVALID_ARGUMENT"


class PreconditionError(ReleaseError):
    """The on-disk state does not allow the operation yet; safe to re-run after fixing it."""

    default_code = "PRECONDITION_FAILED"


class DocumentError(ReleaseError):
    """A document on disk does not match its schema."""

    default_code = "INVALID_DOCUMENT"


class LockError(ReleaseError):
    default_code = "LOCKED"


def format_command_error(error: BaseException, command: str | None) -> dict[str, Any]:
    if isinstance(error, ReleaseError):
        body: dict[str, Any] = {
            "command": command,
            "code": error.code,
            "message": str(error),
        }
        if error.details is not None:
            body["details"] = error.details
        return {"ok": False, "error": body}

    return {
        "ok": False,
        "error": {
            "command": command,
            "code": "COMMAND_FAILED",
            "message": str(error),
        },
    }
