from __future__ import annotations

import json
import sys
from argparse import Namespace
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from read_images import cli
from read_images.server import ImageAnalysisServer


def test_analyze_requires_image_path() -> None:
    parser = cli.build_parser()
    with pytest.raises(SystemExit) as exc:
        parser.parse_args(["analyze"])
    assert exc.value.code == 2


@pytest.mark.parametrize("argv", [["read-images"], ["read-images", "serve"]])
def test_main_routes_to_server(monkeypatch: pytest.MonkeyPatch, argv: list[str]) -> None:
    calls = {"serve": 0}

    def _server_main() -> int:
        calls["serve"] += 1
        return 0

    monkeypatch.setattr(cli, "server_main", _server_main)
    monkeypatch.setattr(sys, "argv", argv)
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 0
    assert calls["serve"] == 1


def test_main_fallthrough_exits_nonzero(monkeypatch: pytest.MonkeyPatch) -> None:
    class _DummyParser:
        def __init__(self) -> None:
            self.print_help_called = False

        def parse_args(self) -> Namespace:
            return Namespace(command="mystery")

        def print_help(self) -> None:
            self.print_help_called = True

    dummy = _DummyParser()
    monkeypatch.setattr(cli, "build_parser", lambda: dummy)
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 2
    assert dummy.print_help_called is True


def _args(**kwargs) -> Namespace:
    base = {"image_path": "photo.png", "question": None, "model": None, "json": False}
    base.update(kwargs)
    return Namespace(**base)


def test_analyze_without_key_fails(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("READ_IMAGES_CONFIG", "/nonexistent/read-images.yml")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert cli.analyze_command(_args()) == 1
    assert "OPENAI_API_KEY" in capsys.readouterr().err


def test_analyze_prints_answer(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    seen: dict = {}

    async def _analyze(self, image_path: str, question=None, model=None) -> str:
        seen["args"] = (image_path, question, model)
        return "A lighthouse at dusk."

    monkeypatch.setenv("READ_IMAGES_CONFIG", "/nonexistent/read-images.yml")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(ImageAnalysisServer, "analyze", _analyze)
    assert cli.analyze_command(_args(question="Where?", json=True)) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["answer"] == "A lighthouse at dusk."
    image_path, question, _ = seen["args"]
    assert Path(image_path).is_absolute()
    assert question == "Where?"


def test_analyze_failure_exits_one(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("READ_IMAGES_CONFIG", "/nonexistent/read-images.yml")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert cli.analyze_command(_args(image_path="/definitely/missing/image.png")) == 1
    assert "Error analyzing image" in capsys.readouterr().err
