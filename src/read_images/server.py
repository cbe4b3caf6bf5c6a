"""
MCP-style image analysis server for read-images.

Exposes a single tool, ``analyze_image``, that loads an image from an
absolute path, shrinks and re-encodes it, and asks a remote vision model a
question about it.

Protocol: JSON-RPC 2.0 over stdio (one JSON object per line).  Requests are
handled concurrently, so replies may arrive in any order; clients must match
them by ``id``.

Usage
-----
Run directly:
    python -m read_images.server

Or via the CLI:
    read-images serve

Client configuration entry
--------------------------
{
  "mcpServers": {
    "read-images": {
      "command": "read-images",
      "args": ["serve"],
      "env": {"OPENAI_API_KEY": "sk-..."}
    }
  }
}
"""
from __future__ import annotations

import asyncio
import copy
import logging
import os
import sys
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from .config import SERVER_NAME, SERVER_VERSION, ServerConfig, configure_logging, load_config
from .framing import LineWriter, iter_lines
from .protocol import Envelope, decode, encode_result, error_envelope
from .tools.errors import (
    InvalidParamsError,
    MethodNotFoundError,
    MissingApiKeyError,
    ParseError,
    ProtocolError,
)
from .tools.imaging import load_image
from .tools.vision import VisionClient

log = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
TOOL_NAME = "analyze_image"

SERVER_INFO: Mapping[str, str] = MappingProxyType({"name": SERVER_NAME, "version": SERVER_VERSION})

TOOL_DEFINITION: Mapping[str, Any] = MappingProxyType({
    "name": TOOL_NAME,
    "description": "Analyze an image using OpenAI vision models (default: gpt-4.1)",
    "inputSchema": {
        "type": "object",
        "properties": {
            "image_path": {
                "type": "string",
                "description": "Path to the image file to analyze (must be absolute path)",
            },
            "question": {
                "type": "string",
                "description": "Question to ask about the image",
            },
            "model": {
                "type": "string",
                "description": "OpenAI model to use (e.g., gpt-4.1, gpt-4.1-mini, gpt-4o, gpt-4o-mini)",
            },
        },
        "required": ["image_path"],
    },
})

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


def _text(s: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": s}]


def validate_arguments(arguments: Any) -> tuple[str, str | None, str | None]:
    """Check ``tools/call`` arguments without touching the filesystem."""
    if not isinstance(arguments, dict):
        raise InvalidParamsError("Invalid params: 'arguments' must be an object")
    image_path = arguments.get("image_path")
    if not isinstance(image_path, str) or not image_path.strip():
        raise InvalidParamsError("Invalid params: 'image_path' is required")
    if not os.path.isabs(image_path):
        raise InvalidParamsError("Invalid params: image path must be absolute")
    question = arguments.get("question")
    if question is not None and not isinstance(question, str):
        raise InvalidParamsError("Invalid params: 'question' must be a string")
    model = arguments.get("model")
    if model is not None and not isinstance(model, str):
        raise InvalidParamsError("Invalid params: 'model' must be a string")
    return image_path, question, model


class ImageAnalysisServer:
    def __init__(
        self,
        config: ServerConfig,
        vision: VisionClient | None = None,
    ) -> None:
        self.config = config
        self.vision = vision or VisionClient(config)
        self.handlers: Mapping[str, Handler] = MappingProxyType({
            "initialize": self._initialize,
            "notifications/initialized": self._initialized,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        })
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        log.info(
            "Initialize request received: protocolVersion=%s clientInfo=%s",
            params.get("protocolVersion"), params.get("clientInfo"),
        )
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}, "logging": {}},
            "serverInfo": dict(SERVER_INFO),
        }

    async def _initialized(self, params: dict[str, Any]) -> None:
        log.info("Initialized notification received")

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [copy.deepcopy(dict(TOOL_DEFINITION))]}

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        if not self.config.has_api_key:
            raise MissingApiKeyError("OPENAI_API_KEY environment variable is required")
        name = params.get("name")
        if name != TOOL_NAME:
            raise MethodNotFoundError(f"Unknown tool: {name}")
        image_path, question, model = validate_arguments(params.get("arguments"))

        try:
            answer = await self.analyze(image_path, question, model)
        except ProtocolError:
            raise
        except Exception as exc:
            log.error("Error processing image %s: %s", image_path, exc)
            return {"content": _text(f"Error analyzing image: {exc}"), "isError": True}
        return {"content": _text(answer)}

    async def analyze(self, image_path: str, question: str | None = None, model: str | None = None) -> str:
        artifact = await load_image(image_path, self.config.profile)
        return await self.vision.analyze(artifact.base64, question, model)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, envelope: Envelope) -> Any:
        handler = self.handlers.get(envelope.method) if isinstance(envelope.method, str) else None
        if handler is None:
            raise MethodNotFoundError(f"Unknown method: {envelope.method}")
        if not isinstance(envelope.params, dict):
            raise InvalidParamsError("Invalid params: 'params' must be an object")
        return await handler(envelope.params)

    async def handle_line(self, line: str, writer: LineWriter) -> None:
        try:
            envelope = decode(line)
        except ParseError as exc:
            log.error("Error parsing JSON-RPC message: %s Line: %s", exc, line[:200])
            writer.write(error_envelope(None, exc))
            return
        except Exception as exc:
            log.exception("Unexpected error decoding message. Line: %s", line[:200])
            writer.write(error_envelope(None, exc))
            return

        log.debug("Received request: %s %s", envelope.method, envelope.id)
        try:
            result = await self.dispatch(envelope)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if envelope.is_notification:
                log.warning("Error in notification %s: %s", envelope.method, exc)
                return
            if not isinstance(exc, ProtocolError):
                log.exception("Unhandled error in %s", envelope.method)
            writer.write(error_envelope(envelope.id, exc))
            return

        if envelope.is_notification:
            log.debug("Processed notification: %s", envelope.method)
            return
        writer.write(encode_result(envelope.id, result if result is not None else {}))

    # ------------------------------------------------------------------
    # Transport loop
    # ------------------------------------------------------------------

    def _spawn(self, line: str, writer: LineWriter) -> None:
        task = asyncio.create_task(self.handle_line(line, writer))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Message handler failed: %s", exc, exc_info=exc)

    async def serve(self, reader: asyncio.StreamReader, writer: LineWriter) -> None:
        """Read until EOF, handling each message in its own task."""
        async for line in iter_lines(reader):
            self._spawn(line, writer)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        log.info("Image Analysis MCP server running on stdio")
        await self.serve(reader, LineWriter(sys.stdout))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(config: ServerConfig | None = None) -> int:
    config = config or load_config()
    configure_logging(config.log_level)
    server = ImageAnalysisServer(config)
    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        # Interrupt ends the process at once; in-flight calls are not drained.
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
