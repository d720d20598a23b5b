"""Smoke tests for the CLI."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from refract import __version__
from refract.cli import app
from refract.prods.models import ProdResponse
from refract.themes.models import EmbeddingsResponse, Theme, ThemeChunk, Usage
from refract.writing.segmenter import segment

TEXT = "I went walking in the park today and it felt wonderful."


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    """Keep config files and env vars from leaking into CLI runs."""
    for key in ("REFRACT_MODE", "REFRACT_MODEL", "REFRACT_STORE_PATH", "REFRACT_EMBEDDING_PROVIDER"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def text_file(tmp_path: Path) -> Path:
    path = tmp_path / "entry.txt"
    path.write_text(TEXT, encoding="utf-8")
    return path


def _theme_response() -> EmbeddingsResponse:
    sentence = segment(TEXT)[0]
    theme = Theme(
        id="cluster-0",
        label="Outdoors",
        description="Time spent outside",
        confidence=0.82,
        chunk_count=1,
        color="#10b981",
        chunks=[ThemeChunk(text=TEXT, sentence_id=sentence.id, correlation=0.93)],
    )
    return EmbeddingsResponse(themes=[theme], usage=Usage(tokens=12, cost=0.00024))


class TestCLI:
    """Tests for the CLI entry point."""

    def test_main_help(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("segment", "analyze", "prod", "replay"):
            assert command in result.output

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"refract {__version__}" in result.output


class TestSegmentCommand:
    def test_json_output(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "two.txt"
        path.write_text("First one. Second one", encoding="utf-8")

        result = runner.invoke(app, ["segment", str(path), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [s["text"] for s in data] == ["First one.", "Second one"]
        assert data[1]["startIndex"] == 11

    def test_table_output(self, runner: CliRunner, text_file: Path) -> None:
        result = runner.invoke(app, ["segment", str(text_file)])
        assert result.exit_code == 0
        assert "1 sentence(s)" in result.output

    def test_empty_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "empty.txt"
        path.write_text("   \n", encoding="utf-8")

        result = runner.invoke(app, ["segment", str(path)])

        assert result.exit_code == 0
        assert "No sentences found" in result.output

    def test_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(app, ["segment", str(tmp_path / "nope.txt")])
        assert result.exit_code != 0


class TestProdCommand:
    def test_requires_credentials(self, runner: CliRunner, text_file: Path, monkeypatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        result = runner.invoke(app, ["prod", str(text_file)])

        assert result.exit_code == 1
        assert "ANTHROPIC_API_KEY" in result.output

    @patch("refract.cli.ProdGenerator")
    def test_prints_prod(self, mock_generator_cls, runner: CliRunner, text_file: Path, monkeypatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        generate = AsyncMock(return_value=ProdResponse(selected_prod="What made it wonderful?", confidence=0.8))
        mock_generator_cls.return_value.generate = generate

        result = runner.invoke(app, ["prod", str(text_file)])

        assert result.exit_code == 0
        assert "What made it wonderful?" in result.output
        request = generate.call_args.args[0]
        assert request.last_paragraph == TEXT
        assert "park" in request.keywords

    @patch("refract.cli.ProdGenerator")
    def test_low_confidence_skipped(self, mock_generator_cls, runner: CliRunner, text_file: Path, monkeypatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        mock_generator_cls.return_value.generate = AsyncMock(
            return_value=ProdResponse(selected_prod="Hmm?", confidence=0.1)
        )

        result = runner.invoke(app, ["prod", str(text_file)])

        assert result.exit_code == 0
        assert "No prod" in result.output
        assert "Hmm?" not in result.output

    @patch("refract.cli.ProdGenerator")
    def test_force_shows_fallback(self, mock_generator_cls, runner: CliRunner, text_file: Path, monkeypatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        mock_generator_cls.return_value.generate = AsyncMock(return_value=ProdResponse.soft_skip())

        result = runner.invoke(app, ["prod", str(text_file), "--force"])

        assert result.exit_code == 0
        assert "What stands out most about this?" in result.output


class TestAnalyzeCommand:
    @patch("refract.cli.analyze", new_callable=AsyncMock)
    def test_prints_themes(self, mock_analyze, runner: CliRunner, text_file: Path) -> None:
        mock_analyze.return_value = (200, _theme_response())

        result = runner.invoke(app, ["analyze", str(text_file)])

        assert result.exit_code == 0
        assert "Outdoors" in result.output
        assert "12 tokens" in result.output
        request = mock_analyze.call_args.args[0]
        assert request.full_text == TEXT
        assert len(request.sentences) == 1

    @patch("refract.cli.analyze", new_callable=AsyncMock)
    def test_save_writes_store(self, mock_analyze, runner: CliRunner, text_file: Path, tmp_path: Path, monkeypatch) -> None:
        store_path = tmp_path / "store.json"
        monkeypatch.setenv("REFRACT_STORE_PATH", str(store_path))
        mock_analyze.return_value = (200, _theme_response())

        result = runner.invoke(app, ["analyze", str(text_file), "--save"])

        assert result.exit_code == 0
        saved = json.loads(store_path.read_text(encoding="utf-8"))
        assert saved["refract-text"] == TEXT
        assert saved["refract-themes"][0]["label"] == "Outdoors"

    @patch("refract.cli.analyze", new_callable=AsyncMock)
    def test_error_exits_nonzero(self, mock_analyze, runner: CliRunner, text_file: Path) -> None:
        mock_analyze.return_value = (500, EmbeddingsResponse(error="Failed to generate embeddings"))

        result = runner.invoke(app, ["analyze", str(text_file)])

        assert result.exit_code == 1
        assert "Failed to generate embeddings" in result.output


class TestReplayCommand:
    def test_replay_lists_triggers(self, runner: CliRunner, text_file: Path) -> None:
        result = runner.invoke(app, ["replay", str(text_file), "--cps", "20"])

        assert result.exit_code == 0
        assert "trigger(s) in production mode" in result.output
        assert "punctuation" in result.output
        assert "watchdog" in result.output

    def test_demo_mode(self, runner: CliRunner, text_file: Path) -> None:
        result = runner.invoke(app, ["--mode", "demo", "replay", str(text_file)])
        assert result.exit_code == 0
        assert "demo mode" in result.output

    def test_rejects_non_positive_speed(self, runner: CliRunner, text_file: Path) -> None:
        result = runner.invoke(app, ["replay", str(text_file), "--cps", "0"])
        assert result.exit_code == 1

    def test_prods_without_key_falls_back(self, runner: CliRunner, text_file: Path, monkeypatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        result = runner.invoke(app, ["replay", str(text_file), "--prods"])
        assert result.exit_code == 0
        assert "replaying without prods" in result.output
