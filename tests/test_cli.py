"""Tests for CLI commands."""

import base64
import hashlib
import json
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from agent_transcripts.cli import main

PNG_BYTES = b"\x89PNG\r\n\x1a\ncli"
NOW = "2026-02-01T12:00:00Z"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def _write_jsonl(lines: list[dict], path: Path) -> Path:
    with open(path, "w") as f:
        for obj in lines:
            f.write(json.dumps(obj) + "\n")
    return path


def _claude_session(path: Path, content="Please fix the failing test") -> Path:
    return _write_jsonl(
        [
            {
                "uuid": "u1",
                "type": "user",
                "timestamp": "2026-01-01T10:00:00Z",
                "sessionId": "sess-cli",
                "cwd": "/work/repo",
                "message": {"role": "user", "content": content},
            },
            {
                "uuid": "a1",
                "type": "assistant",
                "timestamp": "2026-01-01T10:00:01Z",
                "sessionId": "sess-cli",
                "cwd": "/work/repo",
                "message": {
                    "id": "msg_1",
                    "role": "assistant",
                    "model": "claude-sonnet-4-5-20250929",
                    "content": [{"type": "text", "text": "On it."}],
                    "usage": {"input_tokens": 10, "output_tokens": 5},
                },
            },
        ],
        path,
    )


def _codex_rollout(path: Path) -> Path:
    return _write_jsonl(
        [
            {"timestamp": "2026-01-02T08:00:00Z", "type": "session_meta", "payload": {"id": "sess-codex", "cwd": "/work/repo"}},
            {
                "timestamp": "2026-01-02T08:00:01Z",
                "type": "response_item",
                "payload": {"type": "message", "role": "user", "content": [{"type": "input_text", "text": "Fix the build"}]},
            },
        ],
        path,
    )


def _cline_task(root: Path) -> Path:
    task_dir = root / "1700000000000"
    task_dir.mkdir()
    path = task_dir / "api_conversation_history.json"
    path.write_text(json.dumps([{"role": "user", "content": [{"type": "text", "text": "<task>\nAdd docs\n</task>"}]}]))
    return path


class TestCli:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Convert Claude Code, Codex and Cline transcripts" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_convert_help_lists_sources(self, runner):
        result = runner.invoke(main, ["convert", "--help"])
        assert result.exit_code == 0
        assert "claude-code" in result.output
        assert "--blobs-dir" in result.output


class TestConfigCommand:
    def test_config_show(self, runner, workdir):
        result = runner.invoke(main, ["--config", str(workdir / "config.json"), "config", "--show"])
        assert result.exit_code == 0
        assert "Pricing file: None" in result.output
        assert "Blobs dir:" in result.output

    def test_config_save_and_reload(self, runner, workdir):
        config_path = workdir / "nested" / "config.json"
        result = runner.invoke(
            main,
            ["--config", str(config_path), "config", "--pricing-file", "/data/prices.json", "--blobs-dir", "/data/blobs"],
        )
        assert result.exit_code == 0
        assert "Configuration saved." in result.output
        assert json.loads(config_path.read_text()) == {
            "pricing_file": "/data/prices.json",
            "blobs_dir": "/data/blobs",
        }

        result = runner.invoke(main, ["--config", str(config_path), "config"])
        assert "Pricing file: /data/prices.json" in result.output
        assert "Blobs dir:    /data/blobs" in result.output

    def test_corrupt_config_falls_back_to_defaults(self, runner, workdir):
        config_path = workdir / "config.json"
        config_path.write_text("{not json")
        result = runner.invoke(main, ["--config", str(config_path), "config", "--show"])
        assert result.exit_code == 0
        assert "Pricing file: None" in result.output


class TestConvertCommand:
    def _invoke(self, runner, workdir, *args):
        return runner.invoke(main, ["--config", str(workdir / "config.json"), "convert", *args])

    def test_single_file_to_stdout(self, runner, workdir):
        path = _claude_session(workdir / "session.jsonl")
        result = self._invoke(runner, workdir, str(path), "--now", NOW)
        assert result.exit_code == 0, result.output
        doc = json.loads(result.output)
        assert doc["id"] == "sess-cli"
        assert doc["source"] == "claude-code"
        assert doc["preview"] == "Please fix the failing test"
        assert doc["messageCount"] == 2

    def test_multiple_sources_to_file(self, runner, workdir):
        claude = _claude_session(workdir / "session.jsonl")
        codex = _codex_rollout(workdir / "rollout-2026-01-02T08-00-00-0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b.jsonl")
        cline = _cline_task(workdir)
        output = workdir / "out" / "transcripts.json"

        result = self._invoke(runner, workdir, str(claude), str(codex), str(cline), "--now", NOW, "-o", str(output))
        assert result.exit_code == 0, result.output
        docs = json.loads(output.read_text())
        assert [d["source"] for d in docs] == ["claude-code", "codex", "cline"]
        assert docs[2]["id"] == "1700000000000"
        assert docs[2]["timestamp"].startswith("2026-02-01T12:00:00")

    def test_pricing_file(self, runner, workdir):
        path = _claude_session(workdir / "session.jsonl")
        pricing = workdir / "prices.json"
        pricing.write_text(
            json.dumps({"claude-sonnet-4-5-20250929": {"input_cost_per_token": 0.5, "output_cost_per_token": 1.0}})
        )
        result = self._invoke(runner, workdir, str(path), "--pricing", str(pricing))
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["costUsd"] == pytest.approx(10 * 0.5 + 5 * 1.0)

    def test_invalid_pricing_file(self, runner, workdir):
        path = _claude_session(workdir / "session.jsonl")
        pricing = workdir / "prices.json"
        pricing.write_text("[1, 2]")
        result = self._invoke(runner, workdir, str(path), "--pricing", str(pricing))
        assert result.exit_code == 1
        assert "Could not load pricing file" in result.output

    def test_blobs_written(self, runner, workdir):
        image = {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": base64.b64encode(PNG_BYTES).decode()},
        }
        path = _claude_session(workdir / "session.jsonl", content=[{"type": "text", "text": "What is this?"}, image])
        blobs_dir = workdir / "blobs"
        result = self._invoke(
            runner, workdir, str(path), "--blobs-dir", str(blobs_dir), "-o", str(workdir / "out.json")
        )
        assert result.exit_code == 0, result.output
        sha = hashlib.sha256(PNG_BYTES).hexdigest()
        assert (blobs_dir / sha).read_bytes() == PNG_BYTES
        doc = json.loads((workdir / "out.json").read_text())
        assert doc["messages"][0]["images"] == [{"sha256": sha, "mediaType": "image/png"}]

    def test_source_override(self, runner, workdir):
        path = _codex_rollout(workdir / "session.jsonl")
        result = self._invoke(runner, workdir, str(path), "--source", "codex", "--now", NOW)
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["id"] == "sess-codex"

    def test_nothing_converted(self, runner, workdir):
        path = workdir / "empty.jsonl"
        path.write_text("\n")
        result = self._invoke(runner, workdir, str(path))
        assert result.exit_code == 1
        assert "no transcript, skipping" in result.output
        assert "No transcripts converted" in result.output

    def test_invalid_now(self, runner, workdir):
        path = _claude_session(workdir / "session.jsonl")
        result = self._invoke(runner, workdir, str(path), "--now", "yesterday")
        assert result.exit_code == 2
        assert "ISO-8601" in result.output

    def test_missing_file(self, runner, workdir):
        result = self._invoke(runner, workdir, str(workdir / "missing.jsonl"))
        assert result.exit_code != 0
