"""JSON-RPC 2.0 envelope encoding and decoding."""
from __future__ import annotations

import json
import traceback
from dataclasses import dataclass, field
from typing import Any

from .tools.errors import ErrorCode, ParseError, ProtocolError

JSONRPC_VERSION = "2.0"


@dataclass(frozen=True)
class Envelope:
    method: Any
    params: Any = field(default_factory=dict)
    id: Any = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


def decode(line: str) -> Envelope:
    """Parse one inbound line.

    Raises :class:`ParseError` for malformed JSON and for any top-level value
    that is not an object (batch arrays are not accepted).  A missing method or
    malformed params are left for dispatch to reject.
    """
    try:
        req = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON-RPC message: {exc.msg}") from exc
    except (ValueError, RecursionError) as exc:
        # Valid JSON the decoder still refuses: oversized integers, deep nesting.
        raise ParseError(f"Invalid JSON-RPC message: {type(exc).__name__}") from exc
    if not isinstance(req, dict):
        raise ParseError("Invalid JSON-RPC message: expected a JSON object")
    params = req.get("params")
    return Envelope(
        method=req.get("method"),
        params={} if params is None else params,
        id=req.get("id"),
    )


def decode_reply(line: str) -> tuple[Any, Any, dict[str, Any] | None]:
    """Parse an outbound envelope back into ``(id, result, error)``."""
    try:
        reply = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON-RPC reply: {exc.msg}") from exc
    if not isinstance(reply, dict) or reply.get("jsonrpc") != JSONRPC_VERSION:
        raise ParseError("Invalid JSON-RPC reply")
    return reply.get("id"), reply.get("result"), reply.get("error")


def encode_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def encode_error(
    request_id: Any,
    code: ErrorCode | str,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": ErrorCode(code).value, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def error_envelope(request_id: Any, exc: BaseException) -> dict[str, Any]:
    """Map any exception onto the closed error-code set.

    Classified errors keep their code and carry no ``data``; anything else is
    reported as ``InternalError`` with the formatted traceback attached.
    """
    if isinstance(exc, ProtocolError):
        return encode_error(request_id, exc.code, exc.message)
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return encode_error(request_id, ErrorCode.INTERNAL_ERROR, str(exc) or type(exc).__name__, stack)
