"""Typed runtime error carrying a stable machine-readable code."""
from __future__ import annotations


class RuntimeCommandError(RuntimeError):
    """Raised by runtime commands, loaders and exporters.

    ``code`` is one of the ``MF_ERR_*`` identifiers surfaced to clients.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


def as_runtime_error(error: object, fallback_code: str, fallback_message: str) -> RuntimeCommandError:
    """Coerce any exception into a RuntimeCommandError.

    Coded errors pass through unchanged; other exceptions keep their message
    but take ``fallback_code``.
    """
    if isinstance(error, RuntimeCommandError):
        return error
    if isinstance(error, Exception):
        return RuntimeCommandError(fallback_code, str(error) or fallback_message)
    return RuntimeCommandError(fallback_code, fallback_message)
