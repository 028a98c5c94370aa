from typing import Any, Dict, Optional
from fastapi import HTTPException


class ApiError(HTTPException):
    """HTTPException carrying extra JSON fields next to the error message.

    Rendered by the handler in main.py as
    ``{"success": false, "error": detail, **extra}``.
    """

    def __init__(self, status_code: int, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status_code, detail=detail)
        self.extra = extra or {}


class ChainError(Exception):
    """A chain call failed; `kind` is one of the classify_chain_error labels."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


def error_body(detail: Any, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body = {"success": False, "error": detail}
    if extra:
        body.update(extra)
    return body
