from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from .config import configure_logging, load_config
from .server import ImageAnalysisServer
from .server import main as server_main


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="read-images",
        description="Ask a vision model what is in an image, over MCP stdio or from the shell.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "serve",
        help="Run the MCP server over stdio (default when no command is given).",
    )

    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze one image and print the answer (debugging aid).",
    )
    analyze_parser.add_argument("image_path", help="Path to the image file")
    analyze_parser.add_argument("--question", "-q", help="Question to ask about the image")
    analyze_parser.add_argument("--model", "-m", help="Vision model to use")
    analyze_parser.add_argument("--json", action="store_true", help="Print the answer as JSON")
    analyze_parser.set_defaults(func=analyze_command)

    return parser


def analyze_command(args: argparse.Namespace) -> int:
    config = load_config()
    configure_logging(config.log_level)
    if not config.has_api_key:
        print("OPENAI_API_KEY environment variable is required", file=sys.stderr)
        return 1
    server = ImageAnalysisServer(config)
    # The debug entry point resolves relative paths itself; the server never does.
    image_path = os.path.abspath(os.path.expanduser(args.image_path))
    try:
        answer = asyncio.run(server.analyze(image_path, args.question, args.model))
    except Exception as exc:  # noqa: BLE001
        print(f"Error analyzing image: {exc}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps({"image_path": image_path, "answer": answer}, indent=2))
    else:
        print(answer)
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if not args.command or args.command == "serve":
        sys.exit(server_main())
    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
