from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    PARSE_ERROR = "ParseError"
    METHOD_NOT_FOUND = "MethodNotFound"
    INVALID_PARAMS = "InvalidParams"
    MISSING_API_KEY = "MissingApiKey"
    INTERNAL_ERROR = "InternalError"


class ProtocolError(RuntimeError):
    """A classified failure, reported through the JSON-RPC ``error`` field."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class ParseError(ProtocolError):
    code = ErrorCode.PARSE_ERROR


class MethodNotFoundError(ProtocolError):
    code = ErrorCode.METHOD_NOT_FOUND


class InvalidParamsError(ProtocolError):
    code = ErrorCode.INVALID_PARAMS


class MissingApiKeyError(ProtocolError):
    code = ErrorCode.MISSING_API_KEY


class ToolExecutionError(RuntimeError):
    """A domain failure inside ``analyze_image``; reported as an ``isError`` tool result."""


class ImageReadError(ToolExecutionError):
    pass


class ImageDecodeError(ToolExecutionError):
    pass


class VisionAPIError(ToolExecutionError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
